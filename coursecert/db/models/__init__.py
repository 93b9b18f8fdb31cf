from coursecert.db.models.course import Course
from coursecert.db.models.feedback import Feedback
from coursecert.db.models.interview import Interview

__all__ = ["Course", "Feedback", "Interview"]
