import json
import logging
import os
import threading
import time
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import to_checksum_address
from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from bet_escrow.errors import EscrowError, InvalidInput, Unauthorized
from bet_escrow.events import EventLog
from bet_escrow.ledger import BetLedger
from bet_escrow.models import BetStatus, BetTerms, CallContext
from bet_escrow.oracle_registry import OracleRegistry

logger = logging.getLogger(__name__)

AUTH_FIELDS = ("address", "signature", "nonce", "timestamp")


def signed_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Request fields covered by the signature: everything except the auth fields."""
    return {k: v for k, v in data.items() if k not in AUTH_FIELDS}


def _message(action: str, address: str, nonce: str, ts: int, payload: Optional[Dict[str, Any]] = None) -> str:
    body = json.dumps(payload or {}, sort_keys=True, separators=(",", ":"))
    return (f"Bet Escrow Relayer\nAction: {action}\nAddress: {address}\nNonce: {nonce}\n"
            f"Timestamp: {ts}\nPayload: {body}")


def checksum_address(value, field: str = "address") -> str:
    try:
        return to_checksum_address(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} is not a valid address")


def build_escrow(administrator: Optional[str] = None, reporters: Optional[list] = None):
    """Wire a registry and a ledger that share one event log."""
    administrator = checksum_address(administrator or os.getenv("ESCROW_ADMIN_ADDRESS", ""),
                                     "ESCROW_ADMIN_ADDRESS")
    if reporters is None:
        raw = os.getenv("ESCROW_TRUSTED_REPORTERS", "")
        reporters = [r.strip() for r in raw.split(",") if r.strip()]
    events = EventLog()
    registry = OracleRegistry(administrator, events=events)
    ledger = BetLedger(registry, administrator, events=events)
    setup = CallContext(caller=administrator, now=int(time.time()))
    for reporter in reporters:
        registry.add_trusted_reporter(setup, checksum_address(reporter, "ESCROW_TRUSTED_REPORTERS"))
    return ledger, registry


def create_app(ledger: Optional[BetLedger] = None, registry: Optional[OracleRegistry] = None,
               require_signature: Optional[bool] = None, clock=time.time) -> Flask:
    if ledger is None:
        ledger, registry = build_escrow()
    registry = registry or ledger.registry
    if require_signature is None:
        require_signature = os.getenv("RELAYER_REQUIRE_SIGNATURE", "1") == "1"
    signature_ttl = int(os.getenv("SIGNATURE_TTL_SECONDS", "300"))

    app = Flask(__name__)
    # Allow browser calls to every relay endpoint.
    CORS(app, resources={r"/*": {"origins": "*"}})
    app.config["ledger"] = ledger
    app.config["registry"] = registry

    nonces: Dict[str, str] = {}
    # One state-changing call at a time, funds moved before the next begins.
    write_lock = threading.Lock()

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        if isinstance(e, EscrowError):
            body = {"error": e.message, "type": type(e).__name__}
            if e.bet_id is not None:
                body["bet_id"] = e.bet_id
            return jsonify(body), e.status_code
        logger.exception("unhandled relay error")
        return jsonify({"error": str(e)}), 500

    def _now() -> int:
        return int(clock())

    def _int_field(data, key, default=None) -> int:
        if key not in data:
            if default is not None:
                return default
            raise InvalidInput(f"{key} required")
        value = data[key]
        # JSON true/false and 1.9 must not pass as 1
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidInput(f"{key} must be an integer")
        return value

    def _bool_field(data, key) -> bool:
        if key not in data:
            raise InvalidInput(f"{key} required")
        value = data[key]
        if not isinstance(value, bool):
            raise InvalidInput(f"{key} must be true or false")
        return value

    def _str_field(data, key) -> str:
        value = data.get(key)
        if not isinstance(value, str) or not value:
            raise InvalidInput(f"{key} must be a non-empty string")
        return value

    def _authenticate(data, action: str) -> str:
        if not data.get("address"):
            raise InvalidInput("address required")
        address = checksum_address(data["address"])
        if not require_signature:
            return address

        signature = data.get("signature", "")
        nonce = data.get("nonce", "")
        ts = _int_field(data, "timestamp", 0)
        if not signature or not nonce or not ts:
            raise Unauthorized("Missing signature fields")

        # basic replay protection
        if nonces.get(address) != nonce:
            raise Unauthorized("Invalid nonce")
        if abs(_now() - ts) > signature_ttl:
            raise Unauthorized("Signature expired")

        msg = _message(action, address, nonce, ts, signed_payload(data))
        try:
            recovered = Account.recover_message(encode_defunct(text=msg), signature=signature)
        except Exception as e:
            raise Unauthorized("Malformed signature") from e
        if recovered != address:
            raise Unauthorized("Invalid signature")

        # consume nonce
        nonces.pop(address, None)
        return recovered

    def _context(data, action: str, with_value: bool = False) -> CallContext:
        caller = _authenticate(data, action)
        value = _int_field(data, "value") if with_value else 0
        return CallContext(caller=caller, now=_now(), value=value)

    @app.route('/health', methods=['GET', 'HEAD'])
    def health():
        return jsonify({"ok": True, "bets": ledger.bet_count()}), 200

    @app.route('/auth/nonce', methods=['POST'])
    def auth_nonce():
        data = request.json or {}
        if not data.get("address"):
            raise InvalidInput("address required")
        address = checksum_address(data["address"])
        nonce = os.urandom(8).hex()
        nonces[address] = nonce
        return jsonify({"nonce": nonce, "timestamp": _now()})

    @app.route('/bets', methods=['GET'])
    def list_bets():
        status = request.args.get("status")
        try:
            status = BetStatus(int(status)) if status is not None else None
        except ValueError:
            raise InvalidInput("Unknown status")
        participant = request.args.get("participant")
        if participant is not None:
            participant = checksum_address(participant, "participant")
        bets = ledger.list_bets(
            status=status,
            participant=participant,
            offset=request.args.get("offset", 0, type=int),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({"bets": [b.to_dict() for b in bets], "total": ledger.bet_count()})

    @app.route('/bets/<int:bet_id>', methods=['GET'])
    def get_bet(bet_id):
        bet = ledger.get_bet(bet_id)
        res = bet.to_dict()
        res["refundable"] = ledger.is_refundable(bet_id, _now())
        res["pinned_reporter"] = registry.get_pinned_reporter(bet_id)
        return jsonify(res)

    @app.route('/bets', methods=['POST'])
    def create_bet():
        data = request.json or {}
        terms = None
        if data.get("terms") is not None:
            t = data["terms"]
            if not isinstance(t, dict):
                raise InvalidInput("terms must be an object")
            terms = BetTerms(
                sport_event=_str_field(t, "sport_event"),
                selected_team=_str_field(t, "selected_team"),
                threshold=_int_field(t, "threshold"),
                is_more_line=_bool_field(t, "is_more_line"),
            )
        description = data.get("description", "")
        if not isinstance(description, str):
            raise InvalidInput("description must be a string")
        deadline = _int_field(data, "deadline")
        with write_lock:
            ctx = _context(data, "create", with_value=True)
            bet_id = ledger.create_bet(ctx, description, deadline, terms)
        return jsonify({"bet_id": bet_id, "status": BetStatus.OPEN.label}), 201

    @app.route('/bets/<int:bet_id>/join', methods=['POST'])
    def join_bet(bet_id):
        data = request.json or {}
        with write_lock:
            ctx = _context(data, f"join:{bet_id}", with_value=True)
            ledger.join_bet(ctx, bet_id)
            bet = ledger.get_bet(bet_id)
        return jsonify({"bet_id": bet_id, "status": bet.status.label, "total_pot": bet.amount * 2})

    @app.route('/bets/<int:bet_id>/settle', methods=['POST'])
    def settle_bet(bet_id):
        data = request.json or {}
        creator_won = _bool_field(data, "creator_won")
        with write_lock:
            ctx = _context(data, f"settle:{bet_id}")
            winner = ledger.settle_bet(ctx, bet_id, creator_won)
            bet = ledger.get_bet(bet_id)
        return jsonify({"bet_id": bet_id, "winner": winner, "payout": bet.amount * 2,
                        "status": bet.status.label})

    @app.route('/bets/<int:bet_id>/cancel', methods=['POST'])
    def cancel_bet(bet_id):
        data = request.json or {}
        with write_lock:
            ctx = _context(data, f"cancel:{bet_id}")
            ledger.cancel_bet(ctx, bet_id)
        return jsonify({"bet_id": bet_id, "status": BetStatus.CANCELLED.label})

    @app.route('/bets/<int:bet_id>/timeout', methods=['POST'])
    def timeout_bet(bet_id):
        data = request.json or {}
        with write_lock:
            ctx = _context(data, f"timeout:{bet_id}")
            ledger.timeout_bet(ctx, bet_id)
        return jsonify({"bet_id": bet_id, "status": BetStatus.REFUNDED.label})

    @app.route('/bets/<int:bet_id>/result', methods=['POST'])
    def submit_result(bet_id):
        data = request.json or {}
        outcome = _bool_field(data, "outcome")
        with write_lock:
            ctx = _context(data, f"result:{bet_id}")
            outcome = registry.submit_result(ctx, bet_id, outcome)
        return jsonify({"bet_id": bet_id, "outcome": outcome, "reporter": ctx.caller})

    @app.route('/bets/<int:bet_id>/reporter', methods=['GET'])
    def pinned_reporter(bet_id):
        return jsonify({"bet_id": bet_id, "reporter": registry.get_pinned_reporter(bet_id),
                        "submitted": registry.get_submitted_result(bet_id)})

    @app.route('/bets/<int:bet_id>/reporter', methods=['POST'])
    def pin_reporter(bet_id):
        data = request.json or {}
        reporter = checksum_address(data.get("reporter"), "reporter")
        with write_lock:
            ctx = _context(data, f"pin:{bet_id}")
            registry.pin_reporter_to_bet(ctx, bet_id, reporter)
        return jsonify({"bet_id": bet_id, "reporter": reporter}), 201

    @app.route('/oracles', methods=['GET'])
    def list_oracles():
        return jsonify({"reporters": registry.trusted_reporters(), "administrator": registry.administrator})

    @app.route('/oracles/<address>', methods=['GET'])
    def is_trusted(address):
        address = checksum_address(address)
        return jsonify({"address": address, "trusted": registry.is_trusted(address)})

    @app.route('/oracles', methods=['POST'])
    def add_oracle():
        data = request.json or {}
        reporter = checksum_address(data.get("reporter"), "reporter")
        with write_lock:
            ctx = _context(data, "add_reporter")
            registry.add_trusted_reporter(ctx, reporter)
        return jsonify({"reporter": reporter, "trusted": True}), 201

    @app.route('/oracles/<address>', methods=['DELETE'])
    def remove_oracle(address):
        address = checksum_address(address)
        data = request.json or {}
        with write_lock:
            ctx = _context(data, f"remove_reporter:{address}")
            registry.remove_trusted_reporter(ctx, address)
        return jsonify({"reporter": address, "trusted": False})

    @app.route('/balances/<address>', methods=['GET'])
    def balance(address):
        address = checksum_address(address)
        return jsonify({"address": address, "balance": ledger.treasury.balance_of(address)})

    @app.route('/events', methods=['GET'])
    def events():
        since = request.args.get("since", 0, type=int)
        name = request.args.get("name")
        bet_id = request.args.get("bet_id", type=int)
        entries = [
            e for e in ledger.events.since(since)
            if (name is None or e.name == name) and (bet_id is None or e.args.get("bet_id") == bet_id)
        ]
        return jsonify({"events": [e.to_dict() for e in entries]})

    return app


if __name__ == '__main__':
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", "5000"))
    create_app().run(host="0.0.0.0", port=port, debug=os.getenv("FLASK_DEBUG", "0") == "1")
