"""
FlowWatch — Flow Alert Evaluation Engine.

Architecture:
    flowwatch/
    ├── api/             # FastAPI routers (manual trigger, alert history)
    ├── db/              # SQLAlchemy models, engine, query functions
    ├── middleware/      # Request context, error handling
    ├── services/        # NOAA client, Redis hot tier, circuit breaker, scheduler
    ├── forecast/        # Forecast + threshold caches, river id resolution
    └── alerting/        # Classifier, quiet hours, dedup, dispatch, pipeline

Data Flow:
    Scheduler → AlertPipeline.run() → select users → per river:
    RiverIdResolver → ForecastCache + ThresholdCache → classify → dedup
    → AlertDispatcher → push gateway + alert history

Version: 1.0.0
"""

__version__ = "1.0.0"
