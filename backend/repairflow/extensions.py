# Overview: Flask extension instances for the repair database and its migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
# compare_type so autogenerate notices Numeric precision changes on tax rates
migrate = Migrate(compare_type=True)
