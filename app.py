import os
import socket
import sys
from typing import Any, Callable, Dict

from dotenv import load_dotenv
from flask import Flask, jsonify, request

# Load environment variables from .env file before data paths are resolved
load_dotenv()

from database import get_db_connection, init_db
from services.analytics import AggregationError, build_growth_summary, build_kpi_summary
from services.date_ranges import THIS_MONTH, current_time, resolve_date_range
from services.fallback import load_dashboard_analytics
from services.sources import HttpAnalyticsProvider, HttpRecordSource, SqliteRecordSource

# --- App Initialization ---
DEFAULT_PORT = 5002

CRM_API_BASE_URL = os.environ.get('CRM_API_BASE_URL', '').strip()
CRM_API_TIMEOUT = float(os.environ.get('CRM_API_TIMEOUT') or 10)
ANALYTICS_TIMEZONE = os.environ.get('CRM_ANALYTICS_TIMEZONE') or 'UTC'

app = Flask(__name__)
app.json.sort_keys = False

_db_bootstrapped = False


@app.before_request
def ensure_database_ready():
    """Guarantee the SQLite schema exists before serving any request."""
    global _db_bootstrapped
    if _db_bootstrapped or CRM_API_BASE_URL:
        return
    try:
        init_db()
        _db_bootstrapped = True
    except Exception as exc:  # pragma: no cover - defensive logging
        app.logger.exception("Failed to initialize database before request: %s", exc)


def build_record_source():
    if CRM_API_BASE_URL:
        return HttpRecordSource(CRM_API_BASE_URL, timeout=CRM_API_TIMEOUT)
    return SqliteRecordSource(get_db_connection)


def build_analytics_provider():
    if CRM_API_BASE_URL:
        return HttpAnalyticsProvider(CRM_API_BASE_URL, timeout=CRM_API_TIMEOUT)
    return None


def _success(data: Any, **extra: Any):
    payload: Dict[str, Any] = {'success': True, 'data': data}
    payload.update(extra)
    return jsonify(payload)


def _failure(message: str, status: int):
    return jsonify({'success': False, 'message': message}), status


def _analytics_response(project: Callable[[Dict[str, Any]], Any]):
    now = current_time(ANALYTICS_TIMEZONE)
    range_type = request.args.get('rangeType') or THIS_MONTH
    try:
        date_range = resolve_date_range(
            range_type,
            request.args.get('startDate'),
            request.args.get('endDate'),
            now=now,
        )
    except ValueError as exc:
        return _failure(str(exc), 400)

    try:
        result = load_dashboard_analytics(
            build_record_source(),
            date_range,
            provider=build_analytics_provider(),
            now=now,
        )
    except AggregationError as exc:
        app.logger.exception("Failed to aggregate analytics for %s: %s", date_range.to_dict(), exc)
        return _failure(str(exc), 500)
    return _success(project(result.analytics), source=result.source)


@app.route('/api/analytics/dashboard', methods=['GET'])
def api_dashboard_analytics():
    return _analytics_response(lambda analytics: analytics)


@app.route('/api/analytics/kpi-summary', methods=['GET'])
def api_kpi_summary():
    return _analytics_response(build_kpi_summary)


@app.route('/api/analytics/revenue', methods=['GET'])
def api_revenue_analytics():
    return _analytics_response(lambda analytics: analytics['revenue'])


@app.route('/api/analytics/clients', methods=['GET'])
def api_client_analytics():
    return _analytics_response(lambda analytics: analytics['clients'])


@app.route('/api/analytics/growth', methods=['GET'])
def api_growth_metrics():
    return _analytics_response(build_growth_summary)


@app.route('/api/analytics/activity', methods=['GET'])
def api_activity_metrics():
    return _analytics_response(lambda analytics: analytics['activity'])


@app.route('/api/analytics/outstanding-billing', methods=['GET'])
def api_outstanding_billing():
    return _analytics_response(lambda analytics: analytics['billing'])


def is_port_in_use(port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(('127.0.0.1', port)) == 0


def main():
    port = int(os.environ.get('PORT') or DEFAULT_PORT)
    if is_port_in_use(port):
        print(f"Port {port} is already in use.")
        sys.exit(1)
    print(f"Port {port} is free. Starting analytics server.")
    app.run(host='0.0.0.0', port=port, debug=False)


if __name__ == '__main__':
    if not CRM_API_BASE_URL:
        init_db()
    main()
