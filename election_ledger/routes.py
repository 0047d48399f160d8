# election_ledger/routes.py

# JSON API over the election ledger. The ledger is not thread-safe, so every
# view runs its ledger calls under one process-wide lock.

import io
import threading
from datetime import datetime, timezone
from functools import wraps
from flask import Response, jsonify, request
from flask_jwt_extended import jwt_required, set_access_cookies, unset_jwt_cookies
from election_ledger import app, limiter
from election_ledger.audit.audit_logger import AuditLogger
from election_ledger.authentication.rbac import Permission, require_permission
from election_ledger.encryption.password_hashing import PasswordHashingService
from election_ledger.database.exports import write_votes
from election_ledger.errors import (
    AuthenticationError, ConflictError, LedgerError, NotAuthenticated,
    NotFoundError, PermissionDenied, ResourceError, ValidationError,
)
from election_ledger.ledger import ElectionLedger
from election_ledger.security.token_manager import TokenManager

EXTENSION_KEY = 'election_ledger'

ledger_lock = threading.Lock()
token_manager = TokenManager(app)

STATUS_CODES = [
    (ValidationError, 400),
    (AuthenticationError, 401),
    (PermissionDenied, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ResourceError, 503),
]


def create_ledger(flask_app) -> ElectionLedger:
    cfg = flask_app.config
    ledger = ElectionLedger(
        data_dir=cfg['LEDGER_DATA_DIR'],
        admin_pin=cfg['LEDGER_ADMIN_PIN'],
        password_service=PasswordHashingService(),
        audit_logger=AuditLogger(log_dir=cfg['LEDGER_AUDIT_DIR']),
        require_strong_passwords=cfg['LEDGER_STRONG_PASSWORDS'],
    )
    ledger.load()
    return ledger


def install_ledger(flask_app, ledger: ElectionLedger) -> None:
    flask_app.extensions[EXTENSION_KEY] = ledger


def get_ledger() -> ElectionLedger:
    ledger = app.extensions.get(EXTENSION_KEY)
    if ledger is None:
        ledger = create_ledger(app)
        install_ledger(app, ledger)
    return ledger


def locked(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        with ledger_lock:
            return func(*args, **kwargs)
    return wrapper


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object body")
    return data


def _session():
    return get_ledger().session(token_manager.session_token())


def _saved(ledger, payload):
    payload['persisted'] = ledger.last_save_error is None
    return payload


@app.errorhandler(LedgerError)
def handle_ledger_error(error):
    status = next((code for cls, code in STATUS_CODES if isinstance(error, cls)), 500)
    if status >= 500:
        app.logger.error(f"Ledger error: {error}")
    return jsonify({'error': error.message, 'kind': error.kind}), status


@app.route('/api/health')
def health():
    return jsonify({'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()})


@app.route('/api/register', methods=['POST'])
@locked
def register():
    data = _json_body()
    ledger = get_ledger()
    voter = ledger.register(data.get('name'), data.get('email'), data.get('password'),
                            data.get('role') or 'voter')
    return jsonify(_saved(ledger, {'success': True, 'user': voter.to_dict()})), 201


@app.route('/api/login', methods=['POST'])
@locked
def login():
    data = _json_body()
    session = get_ledger().login(data.get('email'), data.get('password'), data.get('admin_pin'))
    token = token_manager.generate_token(session)
    resp = jsonify({'success': True, 'token': token, 'session': session.to_dict()})
    set_access_cookies(resp, token)
    return resp


@app.route('/api/logout', methods=['POST'])
@jwt_required()
@locked
def logout():
    get_ledger().logout(token_manager.session_token())
    resp = jsonify({'success': True})
    unset_jwt_cookies(resp)
    return resp


@app.route('/api/me')
@jwt_required()
@locked
def me():
    voter = get_ledger().current_voter(_session())
    return jsonify({'user': voter.to_dict()})


@app.route('/api/token/verify', methods=['POST'])
@locked
def verify_token():
    # live only while the JWT decodes and its ledger session is still open
    token = _json_body().get('token')
    claims = token_manager.validate_token(token) if isinstance(token, str) and token else None
    if claims is None:
        return jsonify({'valid': False})
    try:
        session = get_ledger().session(claims.get('sid'))
    except NotAuthenticated:
        return jsonify({'valid': False})
    return jsonify({'valid': True, 'session': session.to_dict()})


@app.route('/api/elections', methods=['GET'])
@locked
def list_elections():
    return jsonify({'elections': [e.to_dict() for e in get_ledger().list_elections()]})


@app.route('/api/elections/<election_id>', methods=['GET'])
@locked
def get_election(election_id):
    return jsonify({'election': get_ledger().get_election(election_id).to_dict()})


@app.route('/api/elections', methods=['POST'])
@require_permission(Permission.MANAGE_ELECTIONS)
@locked
def create_election():
    data = _json_body()
    ledger = get_ledger()
    election = ledger.create_election(_session(), data.get('title'), data.get('description'),
                                      data.get('candidates'))
    return jsonify(_saved(ledger, {'election': election.to_dict()})), 201


@app.route('/api/elections/<election_id>/phase', methods=['PUT'])
@require_permission(Permission.MANAGE_ELECTIONS)
@locked
def update_phase(election_id):
    data = _json_body()
    ledger = get_ledger()
    election = ledger.transition_to(_session(), election_id, data.get('phase'))
    return jsonify(_saved(ledger, {'election': election.to_dict()}))


@app.route('/api/elections/<election_id>/manifesto', methods=['PUT'])
@require_permission(Permission.MANAGE_ELECTIONS)
@locked
def set_manifesto(election_id):
    data = _json_body()
    ledger = get_ledger()
    election = ledger.set_manifesto(_session(), election_id, data.get('candidate'),
                                    data.get('manifesto'))
    return jsonify(_saved(ledger, {'election': election.to_dict()}))


@app.route('/api/votes', methods=['POST'])
@limiter.limit(lambda: app.config['LEDGER_VOTE_RATE_LIMIT'])
@require_permission(Permission.VOTE)
@locked
def cast_vote():
    data = _json_body()
    ledger = get_ledger()
    vote = ledger.cast_vote(_session(), data.get('election_id'), data.get('choice'))
    return jsonify(_saved(ledger, {'success': True, 'vote': vote.to_dict()})), 201


@app.route('/api/elections/<election_id>/votes')
@require_permission(Permission.VIEW_VOTES)
@locked
def election_votes(election_id):
    votes = get_ledger().votes_for_election(_session(), election_id)
    return jsonify({'votes': [v.to_dict() for v in votes]})


@app.route('/api/elections/<election_id>/tally')
@require_permission(Permission.VIEW_RESULTS)
@locked
def tally(election_id):
    return jsonify(get_ledger().tally(election_id).to_dict())


@app.route('/api/export/votes')
@require_permission(Permission.EXPORT_VOTES)
@locked
def export_votes():
    ledger = get_ledger()
    ledger.current_voter(_session())
    buffer = io.StringIO()
    write_votes(buffer, ledger.state.votes)
    return Response(buffer.getvalue(), mimetype='text/csv',
                    headers={'Content-Disposition': 'attachment; filename=votes.csv'})


@app.route('/api/audit/verify')
@require_permission(Permission.VIEW_AUDIT_LOGS)
@locked
def verify_audit():
    ledger = get_ledger()
    ledger.current_voter(_session())
    if ledger.audit_logger is None:
        return jsonify({'enabled': False, 'valid': None})
    ledger.audit_logger.flush()
    return jsonify({'enabled': True, 'valid': ledger.audit_logger.verify_log_integrity()})


@app.route('/api/voters')
@require_permission(Permission.VIEW_VOTER_LIST)
@locked
def list_voters():
    voters = get_ledger().list_voters(_session())
    return jsonify({'voters': [v.to_dict() for v in voters]})


@app.route('/api/elections/<election_id>/status')
@require_permission(Permission.VIEW_OWN_STATUS)
@locked
def own_status(election_id):
    ledger = get_ledger()
    election = ledger.get_election(election_id)
    return jsonify({'election_id': election.id,
                    'has_voted': ledger.has_voted(_session(), election.id)})


@app.route('/api/surveys', methods=['POST'])
@require_permission(Permission.MANAGE_ELECTIONS)
@locked
def create_survey():
    data = _json_body()
    ledger = get_ledger()
    survey = ledger.create_survey(_session(), data.get('election_id'), data.get('candidate'),
                                  data.get('question'))
    return jsonify(_saved(ledger, {'success': True, 'survey': survey.to_dict()})), 201


@app.route('/api/elections/<election_id>/surveys')
@locked
def election_surveys(election_id):
    surveys = get_ledger().surveys_for_election(election_id)
    return jsonify({'surveys': [s.to_dict() for s in surveys]})


@app.route('/api/surveys/<survey_id>/response', methods=['POST'])
@require_permission(Permission.RESPOND_SURVEYS)
@locked
def respond_to_survey(survey_id):
    data = _json_body()
    ledger = get_ledger()
    survey = ledger.respond_to_survey(_session(), survey_id, data.get('rating'),
                                      data.get('comment') or '')
    return jsonify(_saved(ledger, {'success': True, 'survey': survey.to_dict()})), 201


@app.route('/api/surveys')
@require_permission(Permission.VIEW_RESULTS)
@locked
def list_surveys():
    ledger = get_ledger()
    session = _session()
    # individual responses are shown to roles that may already see ballots
    detailed = ledger.rbac.has_permission(session.role, Permission.VIEW_VOTES)
    return jsonify({'surveys': [s.to_dict(with_responses=detailed)
                                for s in ledger.list_surveys(session)]})
