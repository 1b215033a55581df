"""Grading prompts per homework type and page layout."""

HOMEWORK_TYPES = ("english", "chinese", "math", "general")
LAYOUTS = ("single", "double")

_JSON_RULES = """
Return ONLY a valid JSON object. Do not wrap it in Markdown code fences and do not
add any explanatory text. Field names must match the example exactly."""

_ANSWER_SCHEMA = """
{
  "answers": [
    {
      "questionNumber": "question number",
      "studentAnswer": "the student's handwritten answer",
      "isCorrect": true/false,
      "correctAnswer": "the correct answer (only if wrong)",
      "explanation": "short explanation"
    }
  ],
  "overallScore": "overall score",
  "feedback": "overall evaluation and suggestions"
}"""

_STEPS_SCHEMA = """
{
  "answers": [
    {
      "questionNumber": "question number",
      "studentAnswer": "the student's handwritten answer",
      "isCorrect": true/false,
      "correctSteps": "the correct working (only if wrong)",
      "explanation": "short explanation"
    }
  ],
  "overallScore": "overall score",
  "feedback": "overall evaluation and suggestions"
}"""

_EVALUATION_SCHEMA = """
{
  "answers": [
    {
      "questionNumber": "question number",
      "studentAnswer": "the student's handwritten answer",
      "evaluation": "short evaluation"
    }
  ],
  "feedback": "overall evaluation and suggestions"
}"""

_SYSTEM_PROMPTS = {
    "english": f"""You are a professional English homework marking assistant. Analyse the student's English homework and extract the handwritten answers.
Pay particular attention to:
1. Handwritten answers inside brackets, on underlines and in blanks
2. Telling the student's handwriting apart from the printed questions
3. Whether grammar and spelling are correct
4. Giving a clear explanation and correction for every mistake

Reply in this JSON format:
{_ANSWER_SCHEMA}
{_JSON_RULES}""",

    "chinese": f"""You are a professional Chinese-language homework marking assistant. Analyse the student's Chinese homework and extract the handwritten answers.
Pay particular attention to:
1. Handwritten answers inside brackets, on underlines and in blanks
2. Telling the student's handwriting apart from the printed questions
3. Whether each answer is accurate and complete
4. Giving a clear explanation and suggestion for every mistake

Reply in this JSON format:
{_ANSWER_SCHEMA}
{_JSON_RULES}""",

    "math": f"""You are a professional math homework marking assistant. Analyse the student's math homework and extract the handwritten answers and working.
Pay particular attention to:
1. Handwritten answers inside brackets, boxes and below lines
2. Telling the student's handwriting apart from the printed questions
3. Formulas, intermediate working and final answers
4. Whether each step and the final result are correct

Reply in this JSON format:
{_STEPS_SCHEMA}
{_JSON_RULES}""",

    "general": f"""Analyse the student's homework and extract the handwritten answers.
Pay particular attention to:
1. Handwritten answers inside brackets, on underlines and in blanks
2. Telling the student's handwriting apart from the printed questions

Reply in this JSON format:
{_EVALUATION_SCHEMA}
{_JSON_RULES}""",
}

_LAYOUT_HINTS = {
    "double": "The page uses a two-column layout. Read the left column first, then the right column, each from top to bottom.",
    "single": "Read the page from top to bottom.",
}


def normalize_homework_type(homework_type: str) -> str:
    homework_type = (homework_type or "general").strip().lower()
    return homework_type if homework_type in HOMEWORK_TYPES else "general"


def get_prompt_for_homework_type(homework_type: str) -> str:
    """System instruction for the given homework type; unknown types get the general rubric."""
    return _SYSTEM_PROMPTS[normalize_homework_type(homework_type)]


def build_text_prompt(homework_type: str, page_count: int = 1, layout: str = "single",
                      student_label: str = "") -> str:
    homework_type = normalize_homework_type(homework_type)
    parts = []
    if student_label:
        parts.append(f"This is the homework of {student_label}.")
    parts.append(_LAYOUT_HINTS.get(layout, _LAYOUT_HINTS["single"]))
    parts.append(f"Analyse this {homework_type} homework, extract and evaluate the answers.")
    if page_count > 1:
        parts.append(
            f"This is a {page_count}-page PDF. Analyse every page, not just the first one."
        )
    parts.append("Analyse the questions and answers in detail and provide a score and suggestions.")
    return " ".join(parts)


def retry_prompt(prompt: str, attempt: int, max_attempts: int) -> str:
    if attempt == 0:
        return prompt
    return f"Retry ({attempt}/{max_attempts - 1}): {prompt}"
