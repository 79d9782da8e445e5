"""
Application Entry Point
Initializes and runs the Flask application
"""

import os
import logging
import click
from bakery_pos import create_app, db

# Determine configuration environment
config_name = os.environ.get('FLASK_ENV', 'development')
app = create_app(config_name)

# Setup logging
if not os.path.exists(app.config['LOG_FOLDER']):
    os.makedirs(app.config['LOG_FOLDER'])

logging.basicConfig(
    level=getattr(logging, app.config['LOG_LEVEL']),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(os.path.join(app.config['LOG_FOLDER'], 'app.log')),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


@app.shell_context_processor
def make_shell_context():
    """Make database and models available in Flask shell"""
    from bakery_pos import models
    return {
        'db': db,
        'User': models.User,
        'Branch': models.Branch,
        'Customer': models.Customer,
        'Reservation': models.Reservation,
        'Product': models.Product,
        'Sale': models.Sale
    }


@app.cli.command()
@click.option('--branch', 'branch_name', default='Matriz', help='Name of the first branch')
@click.option('--owner-email', default='owner@boleriee.com', help='E-mail of the owner account')
@click.option('--owner-password', default='owner123', help='Password of the owner account')
def init_db(branch_name, owner_email, owner_password):
    """Initialize the database with tables, a first branch and an owner account"""
    from bakery_pos.models import User, Branch, Roles

    logger.info("Initializing database...")
    db.create_all()

    branch = Branch.query.filter_by(name=branch_name).first()
    if not branch:
        branch = Branch(name=branch_name, is_active=True)
        db.session.add(branch)
        db.session.flush()
        logger.info(f"Branch '{branch_name}' created")

    owner = User.query.filter_by(email=owner_email).first()
    if not owner:
        owner = User(
            email=owner_email,
            name='Owner',
            role=Roles.OWNER,
            branch_id=branch.id,
            is_active=True
        )
        owner.set_password(owner_password)
        db.session.add(owner)
        logger.info(f"Owner account created ({owner_email})")

    db.session.commit()
    logger.info("Database initialized successfully!")


if __name__ == '__main__':
    is_dev = config_name == 'development'

    with app.app_context():
        db.create_all()
        logger.info("Database tables created")

    logger.info(f"Starting {app.config['BUSINESS_NAME']} back office...")
    app.run(
        host='0.0.0.0',
        port=int(os.environ.get('PORT', 5001)),
        debug=is_dev
    )
