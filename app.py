from flask import Flask, jsonify, request
import logging
import threading
import time

from config import ACTIVE_CHAIN, PORT, LOG_LEVEL, STRICT_TIMESTAMP_WINDOW, ESTIMATOR_MAX_WORKERS
from chainlink_feed_reader import ChainlinkFeedReader
from round_estimation import RoundEstimator
from round_batch import estimate_many, estimate_league_rounds, placeholder_result, EstimationRequest
from round_validation import (
    ValidationError,
    MissingParameterError,
    InvalidTimestampError,
    is_valid_timestamp,
    parse_timestamp,
)
from web3_utils import get_rpc_stats

app = Flask(__name__)

# Track server start time for uptime calculation
SERVER_START_TIME = time.time()


# Logging Setup - colored console format
class _ColorFormatter(logging.Formatter):
    """Simple color formatter for console logs."""
    COLORS = {
        'DEBUG': '\x1b[90m',   # dim gray
        'INFO': '\x1b[37m',    # white
        'WARNING': '\x1b[33m', # yellow
        'ERROR': '\x1b[31m',   # red
        'CRITICAL': '\x1b[41m' # red background
    }
    RESET = '\x1b[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)
        return f"{color}{formatted}{self.RESET}"


def setup_logging(level=LOG_LEVEL):
    root = logging.getLogger()
    if root.handlers:
        return  # already configured

    fmt = '%(asctime)s %(levelname)-7s [%(name)s] %(message)s'
    handler = logging.StreamHandler()
    handler.setFormatter(_ColorFormatter(fmt, datefmt='%H:%M:%S'))

    root.setLevel(level)
    root.addHandler(handler)

    # Module specific defaults to reduce noise
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('web3_utils').setLevel(logging.WARNING)


setup_logging()
logger = logging.getLogger(__name__)

_estimator = None
_estimator_lock = threading.Lock()


def get_estimator() -> RoundEstimator:
    """Lazily build the process-wide estimator (RPC connects on first read)."""
    global _estimator
    if _estimator is None:
        with _estimator_lock:
            if _estimator is None:
                _estimator = RoundEstimator(ChainlinkFeedReader(chain_name=ACTIVE_CHAIN))
    return _estimator


def _validate_timestamp(raw):
    timestamp = parse_timestamp(raw)
    if STRICT_TIMESTAMP_WINDOW and not is_valid_timestamp(timestamp):
        raise InvalidTimestampError("Timestamp out of range")
    return timestamp


def _validated_request(asset, raw_timestamp):
    if isinstance(asset, str):
        asset = asset.strip()
    # 0 counts as missing, like an empty query value
    if not asset or raw_timestamp in (None, "", 0):
        raise MissingParameterError("Missing required parameters: asset and timestamp")
    if not isinstance(asset, str):
        raise ValidationError("Invalid asset")
    return asset, _validate_timestamp(raw_timestamp)


def _json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def _estimate_response(asset, raw_timestamp):
    try:
        asset, timestamp = _validated_request(asset, raw_timestamp)
        result = get_estimator().estimate(asset, timestamp)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"success": True, "data": result.to_dict()})


@app.route('/estimate-round', methods=['GET'])
@app.route('/api/chainlink/estimate-round', methods=['GET'])
def api_estimate_round():
    """Estimate the Chainlink round id for ?asset=&timestamp="""
    try:
        return _estimate_response(request.args.get('asset'), request.args.get('timestamp'))
    except Exception:
        logger.exception("Round estimation request failed")
        return jsonify({"error": "Internal server error"}), 500


@app.route('/estimate-round', methods=['POST'])
@app.route('/api/chainlink/estimate-round', methods=['POST'])
def api_estimate_round_post():
    """Estimate the Chainlink round id for a JSON body {asset, timestamp}"""
    try:
        try:
            body = _json_body()
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        return _estimate_response(body.get('asset'), body.get('timestamp'))
    except Exception:
        logger.exception("Round estimation request failed")
        return jsonify({"error": "Internal server error"}), 500


@app.route('/api/chainlink/estimate-rounds', methods=['POST'])
def api_estimate_rounds():
    """
    Batch estimation: {"requests": [{"asset": "ETH", "timestamp": 1700000000}, ...]}

    Results are positional. Items that fail validation come back as
    low-confidence placeholders instead of failing the batch.
    """
    try:
        try:
            items = _json_body().get('requests')
            if not isinstance(items, list):
                raise ValidationError("requests must be a list")
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400

        slots = []
        valid = []
        for item in items:
            item = item if isinstance(item, dict) else {}
            try:
                valid.append(_validated_request(item.get('asset'), item.get('timestamp')))
                slots.append(None)
            except ValidationError as e:
                slots.append(placeholder_result(EstimationRequest(item.get('asset'), item.get('timestamp')), str(e)))

        estimated = iter(estimate_many(get_estimator(), valid, max_workers=ESTIMATOR_MAX_WORKERS))
        results = [slot if slot is not None else next(estimated) for slot in slots]
        return jsonify({"success": True, "data": [r.to_dict() for r in results]})
    except Exception:
        logger.exception("Batch round estimation failed")
        return jsonify({"error": "Internal server error"}), 500


@app.route('/api/chainlink/league-rounds', methods=['POST'])
def api_league_rounds():
    """League start/end rounds: {"assets": [...], "startTime": ..., "endTime": ...}"""
    try:
        try:
            body = _json_body()
            assets = body.get('assets')
            if not isinstance(assets, list):
                raise ValidationError("assets must be a list")
            if body.get('startTime') in (None, "", 0) or body.get('endTime') in (None, "", 0):
                raise MissingParameterError("Missing required parameters: startTime and endTime")
            start_time = _validate_timestamp(body.get('startTime'))
            end_time = _validate_timestamp(body.get('endTime'))
            if end_time < start_time:
                raise ValidationError("endTime must not be before startTime")
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400

        rounds = estimate_league_rounds(get_estimator(), assets, start_time, end_time,
                                        max_workers=ESTIMATOR_MAX_WORKERS)
        return jsonify({"success": True, "data": rounds.to_dict()})
    except Exception:
        logger.exception("League round estimation failed")
        return jsonify({"error": "Internal server error"}), 500


@app.route('/api/chainlink/assets')
def api_supported_assets():
    """Supported asset symbols and their aggregator addresses"""
    estimator = get_estimator()
    return jsonify({"assets": {symbol: estimator.feeds[symbol] for symbol in estimator.supported_assets()}})


@app.route('/api/rpc_stats')
def api_rpc_stats():
    """RPC provider statistics"""
    stats = get_rpc_stats(ACTIVE_CHAIN)
    stats['uptime_seconds'] = int(time.time() - SERVER_START_TIME)
    return jsonify(stats)


if __name__ == '__main__':
    logger.info("[App] Chainlink round estimator on chain=%s, port=%s", ACTIVE_CHAIN, PORT)
    app.run(debug=False, host='0.0.0.0', port=PORT, use_reloader=False)
