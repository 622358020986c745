# import all models for Alembic
from app.db.models.clinic import Clinic
from app.db.models.user import User
from app.db.models.case import CaseRecord
from app.db.models.import_job import ImportJob
from app.db.models.import_job_error import ImportJobError
