from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, timezone

db = SQLAlchemy()

ROLE_CITIZEN = 'citizen'
ROLE_ADMIN = 'admin'
ROLE_SUPERADMIN = 'superadmin'
ROLES = (ROLE_CITIZEN, ROLE_ADMIN, ROLE_SUPERADMIN)

STATUS_NOT_ASSIGNED = 'not-assigned'
STATUS_ASSIGNED = 'assigned'
STATUS_RESOLVED = 'resolved'
STATUSES = (STATUS_NOT_ASSIGNED, STATUS_ASSIGNED, STATUS_RESOLVED)

PRIORITIES = ('low', 'medium', 'high')


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_CITIZEN) # citizen, admin, superadmin
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        # Never expose the password hash
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'created_at': _iso(self.created_at),
        }


class Category(db.Model):
    __tablename__ = 'categories'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)

    def to_dict(self):
        return {'id': self.id, 'name': self.name}


class Issue(db.Model):
    __tablename__ = 'issues'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)

    # Location
    state = db.Column(db.String(100), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    location = db.Column(db.String(255), nullable=False)

    # Contact details as typed on the form, may differ from the account holder
    reporter_name = db.Column(db.String(150), nullable=False)
    reporter_phone = db.Column(db.String(50), nullable=False)

    category_id = db.Column(db.Integer, db.ForeignKey('categories.id'), nullable=True)
    priority = db.Column(db.String(10), nullable=False) # low, medium, high
    media_urls = db.Column(db.JSON, nullable=False, default=list)

    # Written only by IssueStore mutators, in the same transaction as
    # the assignment rows and resolution fields it summarises
    status = db.Column(db.String(20), nullable=False, default=STATUS_NOT_ASSIGNED, index=True)

    # Resolution, all null until resolved
    resolution_notes = db.Column(db.Text, nullable=True)
    resolution_image_url = db.Column(db.String(255), nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)

    # Meta
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    category = db.relationship('Category', backref=db.backref('issues', lazy=True))
    reporter = db.relationship('User', foreign_keys=[user_id], backref=db.backref('issues', lazy=True))
    resolver = db.relationship('User', foreign_keys=[resolved_by])
    assignments = db.relationship('Assignment', backref='issue', lazy=True, order_by='Assignment.id')

    def resolution_fields(self):
        return (self.resolution_notes, self.resolution_image_url, self.resolved_by, self.resolved_at)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'state': self.state,
            'city': self.city,
            'location': self.location,
            'reporter_name': self.reporter_name,
            'reporter_phone': self.reporter_phone,
            'category_id': self.category_id,
            'priority': self.priority,
            'status': self.status,
            'media_urls': list(self.media_urls or []),
            'user_id': self.user_id,
            'resolution_notes': self.resolution_notes,
            'resolution_image_url': self.resolution_image_url,
            'resolved_by': self.resolved_by,
            'resolved_at': _iso(self.resolved_at),
            'created_at': _iso(self.created_at),
        }


class Upvote(db.Model):
    __tablename__ = 'upvotes'
    # The row itself is the vote; the constraint is what stops double votes
    __table_args__ = (
        db.UniqueConstraint('user_id', 'issue_id', name='uq_upvote_user_issue'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    issue_id = db.Column(db.Integer, db.ForeignKey('issues.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)


class Assignment(db.Model):
    __tablename__ = 'assignments'
    __table_args__ = (
        db.UniqueConstraint('issue_id', 'admin_id', name='uq_assignment_issue_admin'),
    )

    id = db.Column(db.Integer, primary_key=True)
    issue_id = db.Column(db.Integer, db.ForeignKey('issues.id'), nullable=False, index=True)
    admin_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    assignment_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    admin = db.relationship('User', foreign_keys=[admin_id])

    def to_dict(self):
        return {
            'id': self.id,
            'issue_id': self.issue_id,
            'admin_id': self.admin_id,
            'assigned_by': self.assigned_by,
            'assignment_notes': self.assignment_notes,
            'created_at': _iso(self.created_at),
        }
