"""
GRC Analytics Engine - FastAPI Server

Stateless HTTP surface over the analytics engine:
- /stats/* descriptive statistics, regression, correlation and forecasts
- /anomalies/* outlier analysis, GRC anomaly scans and anomaly management
- /predictions/* GRC metric forecasts, early warnings and summaries
- /health endpoint for health checks

Nothing is persisted; every response is computed from its request body.
"""

import os
import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO")),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from stats.core import ContractViolationError, correlation, describe, linear_regression
from stats.models import AnomalyDetectionConfig, ForecastMethod, Sensitivity
from stats.outliers import (
    detect_contextual_anomalies,
    detect_level_shifts,
    detect_outliers_ensemble,
    detect_spikes,
    detect_time_series_anomalies,
    summarize_anomalies,
)
from stats.timeseries import describe_time_series, forecast_linear, forecast_ses
from prediction.engine import (
    predict_compliance_score,
    predict_control_effectiveness,
    predict_issue_volume,
    predict_metric,
    predict_risk_scores,
)
from prediction.early_warning import generate_early_warnings, identify_risk_clusters, summarize_predictions
from prediction.models import PredictionConfig
from detection.anomaly_detector import (
    GrcAnomalyDetector,
    acknowledge_anomaly,
    filter_anomalies,
    resolve_anomaly,
)
from app.schemas import (
    AcknowledgeRequest,
    AnalyzeMetricsRequest,
    AnalyzeTimeSeriesRequest,
    AnalyzeValuesRequest,
    AnomalyScanRequest,
    CompliancePredictionRequest,
    ControlPredictionRequest,
    EarlyWarningRequest,
    FilterRequest,
    ForecastRequest,
    IssuePredictionRequest,
    MetricPredictionRequest,
    PairedValuesRequest,
    PredictionSummaryRequest,
    ResolveRequest,
    RiskPredictionRequest,
    ValuesRequest,
)


# ============================================================================
# Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Response model for health endpoint."""
    status: str
    timestamp: str
    requests_served: int
    uptime_seconds: float
    defaults: Dict


def envelope(data: Any) -> Dict:
    """Wrap a result in the standard success envelope with camelCase fields."""
    return {"success": True, "data": jsonable_encoder(data, by_alias=True)}


# ============================================================================
# Global State
# ============================================================================

class AppState:
    """Application state container: configured defaults and counters only."""
    def __init__(self):
        self.detection_config: AnomalyDetectionConfig = AnomalyDetectionConfig()
        self.prediction_config: PredictionConfig = PredictionConfig()
        self.request_count: int = 0
        self.start_time: datetime = datetime.now(timezone.utc)

    def configure_from_env(self) -> None:
        self.detection_config = AnomalyDetectionConfig(
            sensitivity=Sensitivity(os.getenv("DEFAULT_SENSITIVITY", "medium").lower())
        )
        self.prediction_config = PredictionConfig(
            periods_ahead=int(os.getenv("DEFAULT_PERIODS_AHEAD", "4")),
            confidence_level=float(os.getenv("DEFAULT_CONFIDENCE_LEVEL", "0.95")),
        )

    def detection(self, config: Optional[AnomalyDetectionConfig]) -> AnomalyDetectionConfig:
        return config or self.detection_config

    def prediction(self, config: Optional[PredictionConfig]) -> PredictionConfig:
        return config or self.prediction_config


app_state = AppState()


# ============================================================================
# Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    logger.info("Starting GRC Analytics Engine...")

    app_state.configure_from_env()
    app_state.start_time = datetime.now(timezone.utc)
    logger.info(
        f"Defaults: sensitivity={app_state.detection_config.sensitivity.value}, "
        f"periods_ahead={app_state.prediction_config.periods_ahead}, "
        f"confidence_level={app_state.prediction_config.confidence_level}"
    )

    logger.info("GRC Analytics Engine ready")

    yield

    logger.info(f"Shutting down GRC Analytics Engine after {app_state.request_count} requests")


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="GRC Analytics Engine",
    description="Statistics, anomaly detection and predictions for governance, risk and compliance data",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Middleware
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests."""
    start_time = time.time()
    app_state.request_count += 1

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    logger.debug(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.2f}ms"
    )

    return response


# ============================================================================
# Statistics Endpoints
# ============================================================================

@app.post("/stats/describe")
async def stats_describe(request: ValuesRequest):
    """Descriptive statistics plus the time-series summary of a series."""
    return envelope({
        "descriptive": describe(request.values),
        "timeSeries": describe_time_series(request.values),
    })


@app.post("/stats/regression")
async def stats_regression(request: PairedValuesRequest):
    return envelope(linear_regression(request.x, request.y))


@app.post("/stats/correlation")
async def stats_correlation(request: PairedValuesRequest):
    return envelope({"correlation": correlation(request.x, request.y)})


@app.post("/stats/forecast")
async def stats_forecast(request: ForecastRequest):
    """SES or linear forecast with confidence bounds."""
    if request.method == ForecastMethod.LINEAR:
        result = forecast_linear(request.values, request.periods)
    else:
        result = forecast_ses(request.values, request.periods, request.alpha)
    return envelope(result)


# ============================================================================
# Anomaly Endpoints
# ============================================================================

@app.post("/anomalies/analyze/values")
async def analyze_values(request: AnalyzeValuesRequest):
    """Ensemble outlier detection over a plain series."""
    config = app_state.detection(request.config)
    outliers = detect_outliers_ensemble(request.values, config)

    if outliers:
        logger.warning(f"Detected {len(outliers)} outliers in {len(request.values)} values")

    return envelope({
        "outliers": outliers,
        "summary": summarize_anomalies(request.values, config),
    })


@app.post("/anomalies/analyze/timeseries")
async def analyze_timeseries(request: AnalyzeTimeSeriesRequest):
    """
    Time-aware anomaly detection.

    Runs the rolling z-score, spike and level-shift detectors, plus
    contextual cohorts when timestamps or categories are supplied.
    """
    return envelope({
        "rolling": detect_time_series_anomalies(request.values, request.window, request.threshold),
        "spikes": detect_spikes(request.values),
        "levelShifts": detect_level_shifts(request.values, request.window),
        "contextual": detect_contextual_anomalies(request.values, request.timestamps, request.categories),
        "summary": describe_time_series(request.values),
    })


@app.post("/anomalies/analyze/metrics")
async def analyze_metrics(request: AnalyzeMetricsRequest):
    detector = GrcAnomalyDetector(config=app_state.detection(request.config), as_of=request.as_of)
    anomalies = detector.detect_metric_anomalies(request.data_points, request.metric)

    if anomalies:
        logger.warning(f"Detected {len(anomalies)} anomalies for metric {request.metric.name}")

    return envelope(anomalies)


@app.post("/anomalies/scan")
async def anomaly_scan(request: AnomalyScanRequest):
    """Full GRC anomaly scan over the supplied risks, controls and issues."""
    detector = GrcAnomalyDetector(
        config=app_state.detection(request.config),
        high_risk_threshold=request.high_risk_threshold,
        max_days_without_test=request.max_days_without_test,
        as_of=request.as_of,
    )
    result = detector.run_anomaly_scan(request)

    if result.summary.by_severity.critical:
        logger.warning(f"Anomaly scan found {result.summary.by_severity.critical} critical anomalies")

    return envelope(result)


@app.post("/anomalies/acknowledge")
async def anomaly_acknowledge(request: AcknowledgeRequest):
    return envelope(acknowledge_anomaly(request.anomaly, request.user_id, request.at))


@app.post("/anomalies/resolve")
async def anomaly_resolve(request: ResolveRequest):
    return envelope(resolve_anomaly(request.anomaly, request.resolution, request.at))


@app.post("/anomalies/filter")
async def anomaly_filter(request: FilterRequest):
    return envelope(filter_anomalies(request.anomalies, request.filters))


# ============================================================================
# Prediction Endpoints
# ============================================================================

def _log_alerts(kind: str, organization_id: str, predictions) -> None:
    alert_count = sum(len(p.alerts) for p in predictions)
    if alert_count:
        logger.warning(f"{alert_count} {kind} prediction alerts for organization {organization_id}")


@app.post("/predictions/risks")
async def predictions_risks(request: RiskPredictionRequest):
    predictions = predict_risk_scores(
        request.histories, request.organization_id, app_state.prediction(request.config)
    )
    _log_alerts("risk", request.organization_id, predictions)
    return envelope(predictions)


@app.post("/predictions/controls")
async def predictions_controls(request: ControlPredictionRequest):
    predictions = predict_control_effectiveness(
        request.histories, request.organization_id, app_state.prediction(request.config)
    )
    _log_alerts("control", request.organization_id, predictions)
    return envelope(predictions)


@app.post("/predictions/issues")
async def predictions_issues(request: IssuePredictionRequest):
    forecast = predict_issue_volume(
        request.counts, request.organization_id, app_state.prediction(request.config)
    )
    if forecast.alerts:
        logger.warning(f"{len(forecast.alerts)} issue volume alerts for organization {request.organization_id}")
    return envelope(forecast)


@app.post("/predictions/compliance")
async def predictions_compliance(request: CompliancePredictionRequest):
    forecast = predict_compliance_score(
        request.history, request.organization_id, app_state.prediction(request.config)
    )
    if forecast.alerts:
        logger.warning(f"{len(forecast.alerts)} compliance alerts for organization {request.organization_id}")
    return envelope(forecast)


@app.post("/predictions/metric")
async def predictions_metric(request: MetricPredictionRequest):
    prediction = predict_metric(
        request.values,
        request.metric_name,
        request.organization_id,
        app_state.prediction(request.config),
        request.higher_is_better,
    )
    return envelope(prediction)


@app.post("/predictions/early-warnings")
async def predictions_early_warnings(request: EarlyWarningRequest):
    warnings = generate_early_warnings(
        request.risk_predictions,
        request.control_predictions,
        request.compliance_prediction,
        request.as_of,
        request.compliance_alerts,
    )
    return envelope(warnings)


@app.post("/predictions/summary")
async def predictions_summary(request: PredictionSummaryRequest):
    """Clusters, early warnings and alert counts in one organization summary."""
    clusters = identify_risk_clusters(request.risks, request.risk_histories)
    warnings = generate_early_warnings(
        request.risk_predictions,
        request.control_predictions,
        request.compliance_prediction,
        request.as_of,
        request.compliance_alerts,
    )
    summary = summarize_predictions(
        request.organization_id,
        request.risk_predictions,
        request.control_predictions,
        request.compliance_prediction,
        clusters,
        warnings,
        request.as_of,
    )
    return envelope(summary)


# ============================================================================
# Service Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    now = datetime.now(timezone.utc)
    return HealthResponse(
        status="healthy",
        timestamp=now.isoformat(),
        requests_served=app_state.request_count,
        uptime_seconds=(now - app_state.start_time).total_seconds(),
        defaults={
            "sensitivity": app_state.detection_config.sensitivity.value,
            "periods_ahead": app_state.prediction_config.periods_ahead,
            "confidence_level": app_state.prediction_config.confidence_level,
        }
    )


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "GRC Analytics Engine",
        "version": "1.0.0",
        "description": "Statistics, anomaly detection and predictions for governance, risk and compliance data",
        "endpoints": {
            "stats": "POST /stats/{describe,regression,correlation,forecast} - Statistics and forecasts",
            "anomalies": "POST /anomalies/analyze/{values,timeseries,metrics} - Outlier analysis",
            "scan": "POST /anomalies/scan - Full GRC anomaly scan",
            "management": "POST /anomalies/{acknowledge,resolve,filter} - Anomaly management",
            "predictions": "POST /predictions/{risks,controls,issues,compliance,metric} - Forecasts",
            "warnings": "POST /predictions/{early-warnings,summary} - Early warnings and summaries",
            "health": "GET /health - Health check and configured defaults"
        },
        "documentation": "/docs"
    }


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(ContractViolationError)
async def contract_violation_handler(request: Request, exc: ContractViolationError):
    """Caller sent arguments the engine cannot accept (e.g. mismatched series)."""
    logger.info(f"Contract violation on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=422,
        content={
            "error": "Contract violation",
            "detail": str(exc)
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc)
        }
    )


# ============================================================================
# Run server (for development)
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("APP_PORT", "8000"))
    uvicorn.run(
        "app.server:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info"
    )
