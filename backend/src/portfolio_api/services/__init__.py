"""Business services: projects, visitor tracking, privacy compliance and devpanel."""
