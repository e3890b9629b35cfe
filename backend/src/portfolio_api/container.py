# container.py
# Builds every service once per application and registers the managed
# background services shown in the devpanel.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .api.middleware import RateLimiter
from .config import Settings
from .db.database import Database
from .logging_config import ServiceLogBuffer, get_log_buffer
from .services.aggregation_service import VisitorAggregationService
from .services.compliance_service import ComplianceService
from .services.devpanel_service import DevpanelService
from .services.geolocation import build_resolver
from .services.metrics_collector import MetricsCollector
from .services.privacy_config_service import PrivacyConfigService
from .services.project_service import ProjectService
from .services.realtime_hub import RealtimeHub
from .services.service_manager import BackgroundTaskService, ServiceManager
from .services.visitor_service import VisitorService

logger = logging.getLogger(__name__)

AGGREGATION_INTERVAL_SECONDS = 3600
RETENTION_INTERVAL_SECONDS = 24 * 3600


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    hub: RealtimeHub
    privacy_config: PrivacyConfigService
    compliance: ComplianceService
    visitors: VisitorService
    aggregation: VisitorAggregationService
    projects: ProjectService
    metrics: MetricsCollector
    manager: ServiceManager
    devpanel: DevpanelService
    track_limiter: RateLimiter

    def run_aggregation(self) -> None:
        self.aggregation.aggregate_hourly_metrics()
        self.aggregation.generate_daily_summary()
        self.aggregation.update_location_aggregates()
        self.aggregation.cleanup_expired_sessions()
        retention_days = self.privacy_config.get_retention_days("aggregated")
        self.aggregation.cleanup_old_metrics(retention_days)

    def run_retention(self) -> None:
        self.compliance.apply_retention_policy()

    def shutdown(self) -> None:
        self.manager.stop_all()
        self.hub.close()
        self.database.dispose()


def build_container(
    settings: Settings,
    database: Optional[Database] = None,
    log_buffer: Optional[ServiceLogBuffer] = None,
    geo_resolver=None,
) -> ServiceContainer:
    database = database or Database(settings.database_url)
    database.init_db()

    hub = RealtimeHub()
    privacy_config = PrivacyConfigService(database)
    privacy_config.load_or_create_default()
    compliance = ComplianceService(database, privacy_config, settings.privacy_contact_email)
    visitors = VisitorService(
        database,
        settings,
        privacy_config,
        compliance,
        hub,
        geo_resolver or build_resolver(settings),
    )
    metrics = MetricsCollector(settings.metrics_retention_seconds)
    manager = ServiceManager()
    devpanel = DevpanelService(manager, metrics, log_buffer or get_log_buffer())

    container = ServiceContainer(
        settings=settings,
        database=database,
        hub=hub,
        privacy_config=privacy_config,
        compliance=compliance,
        visitors=visitors,
        aggregation=VisitorAggregationService(database),
        projects=ProjectService(database),
        metrics=metrics,
        manager=manager,
        devpanel=devpanel,
        track_limiter=RateLimiter(settings.track_rate_limit_per_minute),
    )

    manager.register(
        BackgroundTaskService("metrics-collector", devpanel.sample_metrics, settings.metrics_interval_seconds)
    )
    manager.register(
        BackgroundTaskService("visitor-aggregation", container.run_aggregation, AGGREGATION_INTERVAL_SECONDS)
    )
    manager.register(
        BackgroundTaskService("data-retention", container.run_retention, RETENTION_INTERVAL_SECONDS)
    )
    logger.info("Registered %d managed services", len(manager.all()))
    return container
