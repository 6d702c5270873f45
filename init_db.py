"""
Initialize the governance database and register workspace accounts.

Usage:
    python init_db.py                              # create tables
    python init_db.py owner@example.com            # + workspace owner
    python init_db.py reviewer@example.com --admin # + platform admin
"""
from server import app
from models import db, User
import sys


def init_database():
    """Create all database tables"""
    with app.app_context():
        db.create_all()
        print("✅ Database tables created successfully!")


def add_user(email, is_admin=False):
    """Create a workspace owner (or admin reviewer); returns its id"""
    email = email.lower().strip()
    with app.app_context():
        user = User.query.filter_by(email=email).first()
        if user is not None:
            if is_admin and not user.is_admin:
                user.is_admin = True
                db.session.commit()
                print(f"✅ Promoted {email} to admin")
            else:
                print(f"ℹ️  {email} already exists (workspace {user.id})")
            return user.id

        user = User(email=email, is_admin=is_admin)
        db.session.add(user)
        db.session.commit()
        role = 'admin' if is_admin else 'workspace owner'
        print(f"✅ Created {role} {email} (workspace {user.id})")
        return user.id


if __name__ == '__main__':
    init_database()

    args = [a for a in sys.argv[1:] if not a.startswith('--')]
    if args:
        add_user(args[0], is_admin='--admin' in sys.argv)
