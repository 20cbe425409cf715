# python -m db.init_db

from db.database import Base, engine
from db.models.users import User
from db.models.assessments import Assessment, Question, Option
from db.models.attempts import Attempt, AnswerRecord
from db.models.exam_blocks import ExamBlock
from db.models.memberships import MembershipGrant
from db.models.cermat import CermatAttempt
from db.models.site_settings import SiteSetting


def init_db():
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    print("Creating tables...")
    init_db()
    print("Done")
