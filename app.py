import logging

import click
from flask import Blueprint, Flask, current_app, jsonify, request, send_from_directory
from flask.cli import with_appcontext
from flask_login import LoginManager, current_user, login_required, login_user, logout_user
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.security import check_password_hash, generate_password_hash

from config import Config
from models.models import ROLE_CITIZEN, ROLES, Category, User, db
from services import policy, reference
from services.analytics import AnalyticsAggregator
from services.errors import EngineError, ValidationError
from services.identity import identity_from_user
from services.lifecycle import LifecycleEngine
from services.media import MediaStore
from services.store import IssueStore
from services.votes import VoteLedger

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)
login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'unauthenticated', 'message': 'Authentication required'}), 401


# Engine wiring, one set of objects per request around the request's session
def _store():
    return IssueStore(db.session)


def _lifecycle():
    return LifecycleEngine(
        _store(),
        enforce_assignee=current_app.config['ENFORCE_ASSIGNEE_ON_RESOLVE'],
        max_media=current_app.config['MAX_MEDIA_FILES'],
    )


def _media():
    return MediaStore(current_app.config['UPLOAD_FOLDER'])


def _identity():
    return identity_from_user(current_user)


def _json_body():
    data = request.get_json(silent=True)
    if data is not None and not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _payload():
    data = _json_body()
    return data if data is not None else request.form.to_dict()


def _field(data, name, strip=True):
    # Non-string values read as missing
    value = data.get(name)
    if not isinstance(value, str):
        return ''
    return value.strip() if strip else value


# Routes - Auth
@api.route('/api/register', methods=['POST'])
def register():
    data = _payload()
    email = _field(data, 'email')
    password = _field(data, 'password', strip=False)
    name = _field(data, 'name')
    if not email or '@' not in email or not password or not name:
        raise ValidationError('Name, email and password are required')

    store = _store()
    # Self-registration only ever creates citizens; see `flask create-user`
    hashed_password = generate_password_hash(password, method='scrypt')
    with store.transaction():
        user = store.create_user(email, name, hashed_password, ROLE_CITIZEN)

    login_user(user)
    return jsonify(user.to_dict()), 201


@api.route('/api/login', methods=['POST'])
def login():
    data = _payload()
    email = _field(data, 'email')
    user = _store().get_user_by_email(email) if email else None

    if user and check_password_hash(user.password, _field(data, 'password', strip=False)):
        login_user(user)
        return jsonify(user.to_dict())
    logger.warning("Failed login for %s", email or '<missing email>')
    return jsonify({'error': 'invalid_credentials', 'message': 'Invalid credentials'}), 401


@api.route('/api/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out'})


@api.route('/api/user')
@login_required
def me():
    return jsonify(current_user.to_dict())


# Routes - Reference data
@api.route('/api/states')
def states():
    return jsonify(reference.get_states())


@api.route('/api/cities/<state>')
def cities(state):
    return jsonify(reference.get_cities(state))


@api.route('/api/categories', methods=['GET'])
def list_categories():
    return jsonify([c.to_dict() for c in _store().list_categories()])


@api.route('/api/categories', methods=['POST'])
@login_required
def create_category():
    policy.authorize(_identity(), policy.MANAGE_CATEGORIES)
    name = _field(_payload(), 'name')
    if not name:
        raise ValidationError('Category name is required')

    store = _store()
    with store.transaction():
        category = store.create_category(name)
    return jsonify(category.to_dict()), 201


# Routes - Issues
@api.route('/api/issues', methods=['GET'])
def list_issues():
    issues = _store().list_issues(
        state=request.args.get('state') or None,
        city=request.args.get('city') or None,
        status=request.args.get('status') or None,
        reporter_id=request.args.get('user_id', type=int),
    )
    return jsonify(issues)


@api.route('/api/issues/<int:issue_id>', methods=['GET'])
def get_issue(issue_id):
    viewer_id = current_user.id if current_user.is_authenticated else None
    return jsonify(_store().get_issue(issue_id, viewer_id=viewer_id))


@api.route('/api/issues', methods=['POST'])
@login_required
def submit_issue():
    identity = _identity()
    # Check the role before anything is written to the media store
    policy.authorize(identity, policy.CREATE_ISSUE)

    draft = _payload()
    media = _media()
    saved = []
    files = request.files.getlist('media')
    if files:
        saved = draft['media_urls'] = media.save_all(files)

    try:
        issue = _lifecycle().submit(identity, draft)
    except EngineError:
        media.discard(saved)
        raise
    return jsonify(issue), 201


@api.route('/api/my-issues')
@login_required
def my_issues():
    return jsonify(_lifecycle().issues_for_reporter(_identity()))


@api.route('/api/issues/<int:issue_id>/upvote', methods=['POST'])
@login_required
def toggle_upvote(issue_id):
    result = VoteLedger(_store()).toggle_upvote(_identity(), issue_id)
    return jsonify(result)


@api.route('/api/issues/<int:issue_id>/assign', methods=['POST'])
@login_required
def assign_issue(issue_id):
    data = _json_body()
    if data is None:
        data = {
            'admin_ids': request.form.getlist('admin_ids'),
            'assignment_notes': request.form.get('assignment_notes'),
        }

    assignments = _lifecycle().assign(
        _identity(), issue_id, data.get('admin_ids'), data.get('assignment_notes')
    )
    return jsonify(assignments)


@api.route('/api/issues/<int:issue_id>/resolve', methods=['POST'])
@login_required
def resolve_issue(issue_id):
    identity = _identity()
    policy.authorize(identity, policy.RESOLVE)

    data = _payload()
    media = _media()
    saved = []
    proof_ref = data.get('resolution_image_url')
    proof = request.files.get('resolution_image')
    if proof is not None and proof.filename:
        proof_ref = media.save(proof)
        saved.append(proof_ref)

    try:
        issue = _lifecycle().resolve(identity, issue_id, data.get('resolution_notes'), proof_ref)
    except EngineError:
        media.discard(saved)
        raise
    return jsonify(issue)


# Routes - Admin
@api.route('/api/admin/issues')
@login_required
def admin_queue():
    return jsonify(_lifecycle().admin_queue(_identity()))


@api.route('/api/admins')
@login_required
def list_admins():
    policy.authorize(_identity(), policy.LIST_ADMINS)
    return jsonify([u.to_dict() for u in _store().list_admins()])


@api.route('/api/analytics')
@login_required
def analytics():
    return jsonify(AnalyticsAggregator(_store()).get_analytics(_identity()))


@api.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)


# Error handling
def handle_engine_error(error):
    return jsonify(error.to_dict()), error.status_code


def handle_too_large(error):
    limit = current_app.config.get('MAX_CONTENT_LENGTH')
    return jsonify({'error': 'payload_too_large', 'message': f'Upload exceeds {limit} bytes'}), 413


# CLI
def init_db():
    db.create_all()
    existing = {c.name for c in Category.query.all()}
    for name in current_app.config['DEFAULT_CATEGORIES']:
        if name not in existing:
            db.session.add(Category(name=name))
    db.session.commit()


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create tables and seed the default categories."""
    init_db()
    click.echo('Initialized the database.')


@click.command('create-user')
@with_appcontext
@click.argument('email')
@click.argument('name')
@click.option('--role', type=click.Choice(ROLES), default=ROLE_CITIZEN)
@click.password_option()
def create_user_command(email, name, role, password):
    """Create an account with any role, admins and superadmins included."""
    store = IssueStore(db.session)
    with store.transaction():
        user = store.create_user(email, name, generate_password_hash(password, method='scrypt'), role)
    click.echo(f'Created {role} {user.email} (id {user.id})')


def create_app(config_object=None, **overrides):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    app.register_blueprint(api)
    app.register_error_handler(EngineError, handle_engine_error)
    app.register_error_handler(RequestEntityTooLarge, handle_too_large)
    app.cli.add_command(init_db_command)
    app.cli.add_command(create_user_command)
    return app


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        init_db()
    app.run(host='0.0.0.0', debug=True)
