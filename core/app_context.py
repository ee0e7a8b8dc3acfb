from dataclasses import dataclass
from typing import Optional

from core.config_loader import AppConfig
from core.credit_ledger import CreditLedger
from core.scoring import ProgressAggregator, ScoringDispatcher, ScoringModelService, ScoringWorker
from core.scoring_client import ScoringClient
from core.sourcing_client import SourcingClient
from notification.analytics import AnalyticsClient
from notification.realtime import NullRealtimeBus, RealtimeBus, RedisRealtimeBus
from pipeline.queue import RQTaskPublisher, TaskPublisher
from pipeline.sourcing_workflow import SourcingWorkflow
from pipeline.strategy_workflow import StrategyWorkflow


@dataclass
class AppContext:
    """Application context container that holds all wired dependencies.

    This eliminates duplicate wiring code and provides a single source
    of truth for service instantiation. DB access is obtained via
    sourcing_uow() inside each service call.
    """
    config: AppConfig
    sourcing_client: SourcingClient
    scoring_client: ScoringClient
    realtime: RealtimeBus
    publisher: TaskPublisher
    analytics: AnalyticsClient
    model_service: ScoringModelService
    progress: ProgressAggregator
    dispatcher: ScoringDispatcher
    scoring_worker: ScoringWorker
    strategy_workflow: StrategyWorkflow
    sourcing_workflow: SourcingWorkflow
    credit_ledger: CreditLedger

    @classmethod
    def build(
        cls,
        config: AppConfig,
        session_factory=None,
        publisher: Optional[TaskPublisher] = None,
        realtime: Optional[RealtimeBus] = None
    ) -> "AppContext":
        """Build an AppContext from config.

        Args:
            config: Loaded application configuration
            session_factory: Session factory for every service, default SessionLocal
            publisher: Override for the queue publisher (tests, CLI)
            realtime: Override for the realtime bus

        Returns:
            Fully wired AppContext instance (no DB session attached)
        """
        sourcing_client = cls._build_sourcing_client(config)
        scoring_client = cls._build_scoring_client(config)
        realtime = realtime or cls._build_realtime(config)
        publisher = publisher or cls._build_publisher(config)
        analytics = AnalyticsClient(
            url=config.analytics.url,
            api_key=config.analytics.api_key,
            enabled=config.analytics.enabled,
            request_timeout_seconds=config.analytics.request_timeout_seconds
        )

        model_service = ScoringModelService(scoring_client, session_factory=session_factory)
        progress = ProgressAggregator(session_factory)
        dispatcher = ScoringDispatcher(
            publisher,
            realtime,
            session_factory=session_factory,
            default_parallelism=config.scoring.default_parallelism,
            bucket_seconds=config.scoring.bucket_seconds
        )
        scoring_worker = ScoringWorker(
            scoring_client,
            realtime,
            progress=progress,
            session_factory=session_factory,
            max_attempts=config.scoring.max_attempts,
            backoff_seconds=config.scoring.backoff_seconds
        )
        sourcing_workflow = SourcingWorkflow(
            sourcing_client,
            model_service,
            publisher,
            realtime,
            session_factory=session_factory,
            strategy_max_items=config.workflow.strategy_max_items,
            scoring_parallelism=config.workflow.scoring_parallelism
        )
        strategy_workflow = StrategyWorkflow(
            sourcing_client,
            publisher=publisher,
            session_factory=session_factory,
            poll_interval_seconds=config.workflow.poll_interval_seconds,
            max_polls=config.workflow.max_polls,
            realtime=realtime,
            on_finished=sourcing_workflow.on_strategy_finished
        )
        credit_ledger = CreditLedger(
            session_factory=session_factory,
            analytics=analytics,
            low_threshold=config.credits.low_threshold
        )

        return cls(
            config=config,
            sourcing_client=sourcing_client,
            scoring_client=scoring_client,
            realtime=realtime,
            publisher=publisher,
            analytics=analytics,
            model_service=model_service,
            progress=progress,
            dispatcher=dispatcher,
            scoring_worker=scoring_worker,
            strategy_workflow=strategy_workflow,
            sourcing_workflow=sourcing_workflow,
            credit_ledger=credit_ledger
        )

    @staticmethod
    def _build_sourcing_client(config: AppConfig) -> SourcingClient:
        api = config.sourcing_api
        return SourcingClient(
            base_url=api.url,
            request_timeout_seconds=api.request_timeout_seconds,
            generate_path=api.generate_path,
            execute_path=api.execute_path,
            results_path=api.results_path
        )

    @staticmethod
    def _build_scoring_client(config: AppConfig) -> ScoringClient:
        api = config.scoring_api
        return ScoringClient(
            base_url=api.url,
            request_timeout_seconds=api.request_timeout_seconds,
            parse_path=api.parse_path,
            calculation_path=api.calculation_path,
            evaluate_path=api.evaluate_path
        )

    @staticmethod
    def _build_realtime(config: AppConfig) -> RealtimeBus:
        if not config.realtime.enabled:
            return NullRealtimeBus()
        return RedisRealtimeBus(
            redis_url=config.redis.url,
            stream_max_length=config.realtime.stream_max_length
        )

    @staticmethod
    def _build_publisher(config: AppConfig) -> TaskPublisher:
        queue_config = config.queue
        return RQTaskPublisher(
            redis_url=config.redis.url,
            queue_name=queue_config.name,
            base_url=queue_config.base_url,
            signing_key=queue_config.current_signing_key,
            retry_max=queue_config.retry_max,
            retry_intervals=queue_config.retry_intervals,
            job_timeout=queue_config.job_timeout
        )

    def close(self) -> None:
        self.sourcing_client.close()
        self.scoring_client.close()
        self.analytics.close()
