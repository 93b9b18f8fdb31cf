"""
Centralized prompt registry for course completion interviews.

Keeps the long-lived prompt strings in one place and assembles them from the
course document and the flattened transcript.
"""

from __future__ import annotations

from coursecert.services.records import Course


ASSESSOR_PERSONA = (
    "You are a senior technical interviewer analyzing course completion interviews. "
    "Be objective but constructive in feedback. "
    "Consider the course curriculum and expected competency levels."
)

QUESTION_AUTHOR_PERSONA = (
    "You write technical interview questions that check whether a learner "
    "actually absorbed a course. Questions are short, concrete and answerable orally."
)


def _module_details(course: Course) -> str:
    blocks = []
    for module in course.modules:
        lessons = []
        for lesson in module.lessons:
            topics = ", ".join(r.title for r in lesson.resources) or "n/a"
            lessons.append(f'- "{lesson.title}": {lesson.description}\n  Key Topics: {topics}')
        blocks.append(f'Module: "{module.title}"\nLessons:\n' + "\n".join(lessons))
    return "\n\n".join(blocks)


def question_prompt(course: Course, *, min_questions: int, max_questions: int) -> str:
    """Question-generation prompt built from the course outline."""
    objectives = ", ".join(course.objectives) or "n/a"
    tech_stack = ", ".join(course.tech_stack) or "n/a"
    return f"""Generate technical interview questions based on this course content:

COURSE TITLE: {course.title}
COURSE DESCRIPTION: {course.description}
LEARNING OBJECTIVES: {objectives}
TECH STACK: {tech_stack}

COURSE MODULES DETAILS:
{_module_details(course)}

Generate between {min_questions} and {max_questions} technical interview questions that:
1. Test practical understanding of course concepts
2. Cover all main modules and lessons
3. Include questions about implementation details
4. Mix theoretical and practical aspects
5. Focus on key technologies mentioned in resources

Return a JSON object of exactly this shape and nothing else:
{{"questions": ["Question 1", "Question 2"]}}"""


def assessment_prompt(transcript_text: str, *, interview_id: str, user_id: str) -> str:
    return f"""Analyze this technical interview transcript for a course completion assessment.
Interview ID: {interview_id}
Candidate ID: {user_id}

Transcript:
{transcript_text}

Provide detailed evaluation with:
- Technical accuracy based on course content
- Implementation capability of concepts
- Communication clarity
- Problem-solving approach
- Course-specific knowledge retention

Return a JSON object with exactly these fields, every score an integer from 0 to 100:
{{
  "totalScore": 0,
  "categoryScores": {{
    "communication": 0,
    "technical": 0,
    "problemSolving": 0,
    "culturalFit": 0,
    "confidence": 0
  }},
  "strengths": ["..."],
  "areasForImprovement": ["..."],
  "finalAssessment": "..."
}}"""
