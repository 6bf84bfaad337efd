"""Paper generation and grading with an LLM served by Groq.

Groq exposes an OpenAI-compatible endpoint, so the chat model is a
ChatOpenAI pointed at GROQ_BASE_URL. Both calls return a single JSON
object; `parse_model_json` turns it into a dict.
"""

import json
import logging
import os
from typing import Any, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

logger = logging.getLogger(__name__)

GROQ_API_KEY = os.environ.get("GROQ_API_KEY", "")
GROQ_BASE_URL = os.environ.get("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
GROQ_MODEL = os.environ.get("GROQ_MODEL", "llama-3.3-70b-versatile")

ORIGINALITY_TARGET_PCT = 85
EXCERPT_CHARS = 500

COURSE_POLICY = {
    "grading_scale": "A: 90-100, B: 80-89, C: 70-79, D: 60-69, F: 0-59",
    "pass_threshold": 60,
    "partial_marking": True,
}


class GenerationError(Exception):
    """Raised when the model call fails or returns unusable output."""


PAPER_GENERATION_PROMPT = """You are PaperSmith, an exam paper generator for a student-help platform.

Mission:
- Generate high-quality, original exam/question papers aligned to the course's historical paper style and uploaded materials, using only provided/retrieved context.
- Respect plan limits and output a strict JSON object matching the provided schema.

Inputs you will receive at runtime:
- course: { id, name, level, board_or_university, language }
- plan: { tier: "free" | "medium" | "pro", user_quota_left_this_period, max_variants, include_answers: boolean }
- request: { exam_type, total_marks, duration_minutes, topics_include[], topics_exclude[], difficulty_pref?, seed?, variant_count?, style_overrides? }
- context.rag: array of retrieved items (old papers, syllabus, reference notes)
  Each item: { id, type, title, year?, weightings?, style_notes?, excerpt, source_uri, relevance_score }
- policy: { originality_target_pct, citation_required: boolean, language, safety_flags: [] }

Core rules:
1) Use only the supplied context. If critical info is missing (e.g., syllabus or style), degrade gracefully by proposing a blueprint and marking missing fields.
2) Match historical style: sections, marks distribution, question formats, and phrasing patterns. If multiple styles exist, choose the most recent or highest relevance_score and explain the choice in metadata.
3) Enforce plan limits:
   - If variant_count > plan.max_variants, cap to plan.max_variants.
   - If user_quota_left_this_period == 0, return a JSON error with code "quota_exhausted" and a suggested upgrade message.
4) Difficulty mixing (default unless overridden): 40% easy, 40% medium, 20% hard (by marks). Keep internal balance within each section.
5) Originality: Rephrase and transform. Do not copy verbatim from context unless the content is a definition or code snippet that must be exact; even then, cite it.
6) Answers & rubrics: Include only if plan.include_answers is true or the request explicitly asks for them.
7) Reproducibility: If a seed is provided, use it to ensure stable randomness across variants. If not provided, generate and return a seed.
8) Safety & scope: Avoid harmful, discriminatory, or exam-compromising content. No personal data. Keep within academic integrity.

Output schema:
{
  "status": "ok" | "error" | "needs_more_context",
  "meta": { "seed": string, "style_alignment": string },
  "paper": [ { "variant_id": string, "title": string, "instructions": string,
               "sections": [ { "name": string, "questions": [
                   { "id": string, "type": string, "text": string, "marks": number,
                     "difficulty": "easy" | "medium" | "hard", "syllabus_tags": [string],
                     "source_citations": [ { "id": string, "rationale": string } ] } ] } ] } ],
  "marking_scheme": [ { "question_id": string, "answer_key": string, "rubric": string, "max_marks": number, "difficulty": string } ],
  "missing_fields": [string],
  "error": { "code": string, "message": string }
}

Citations:
- For each question, add source_citations referring to context.rag items used. If none used directly, use the id "synthesized" with a rationale.

Language & formatting:
- Write in policy.language. Be concise, precise, and exam-appropriate.
- No extra commentary outside the JSON. No markdown in the JSON."""


GRADING_PROMPT = """You are GradeSmith, an AI grading assistant for exam papers.

Mission:
- Grade student answers according to the provided marking scheme and rubrics
- Provide detailed feedback with strengths and improvement suggestions
- Calculate accurate scores with partial marking where applicable

Inputs:
- paper_variant_id: The ID of the generated paper variant
- marking_scheme: Array of { question_id, answer_key, rubric, max_marks, difficulty }
- extracted_answers: Array of { question_id, answer_text }
- course_policy: { grading_scale, pass_threshold, partial_marking: boolean }

Core rules:
1) Follow the marking scheme exactly - do not deviate from provided rubrics
2) Apply partial marking for incomplete but partially correct answers
3) Provide constructive feedback highlighting strengths and areas for improvement
4) Be consistent in grading across similar question types
5) Flag any answers that may need human review for complex subjective questions
6) Calculate total score, percentage, and grade according to course policy

Output schema:
{
  "status": "ok" | "error",
  "total_score": number, "max_score": number, "percentage": number, "grade": string,
  "marks_breakdown": [ { "question_id": string, "awarded": number, "max_marks": number, "comment": string, "needs_review": boolean } ],
  "feedback": { "strengths": [string], "improvement_suggestions": [string], "summary": string },
  "error": { "code": string, "message": string, "missing_fields": [string] }
}

Language & formatting:
- Write in the course language
- Be constructive and educational in feedback
- No extra commentary outside the JSON"""


def _json_or_null(value: Any) -> str:
    if value is None or value == "" or value == []:
        return "null"
    return json.dumps(value)


def quota_left(max_papers_per_month: int, papers_this_month: int):
    """Remaining papers this period, or "unlimited" for -1 plans."""
    if max_papers_per_month < 0:
        return "unlimited"
    return max(max_papers_per_month - papers_this_month, 0)


def build_context_items(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Shape Qdrant hits into the context.rag items the prompt describes."""
    items = []
    for result in results:
        payload = result.get("payload") or {}
        items.append({
            "id": result["id"],
            "type": payload.get("type"),
            "title": payload.get("title"),
            "year": payload.get("year"),
            "weightings": payload.get("weightings"),
            "style_notes": payload.get("styleNotes"),
            "excerpt": (payload.get("content") or "")[:EXCERPT_CHARS],
            "source_uri": payload.get("materialId") or result["id"],
            "relevance_score": result.get("score"),
        })
    return items


def build_paper_prompt(
    course,
    plan,
    papers_this_month: int,
    request: dict[str, Any],
    context: list[dict[str, Any]],
) -> str:
    """Render the user message for paper generation."""
    variant_count = min(max(int(request.get("variant_count") or 1), 1), plan.max_variants)

    rag_lines = []
    for item in context:
        rag_lines.append(
            f"- id: {item['id']}\n"
            f"  type: {item['type']}\n"
            f"  title: {item['title']}\n"
            f"  year: {item['year'] if item['year'] is not None else 'null'}\n"
            f"  weightings: {_json_or_null(item['weightings'])}\n"
            f"  style_notes: {item['style_notes'] or 'null'}\n"
            f"  excerpt: {item['excerpt']}\n"
            f"  source_uri: {item['source_uri']}\n"
            f"  relevance_score: {item['relevance_score']}"
        )

    return f"""Generate exam paper(s) per the system rules using this input:

course:
- id: {course.id}
- name: {course.name}
- level: {course.level}
- board_or_university: {course.board_or_university}
- language: {course.language}

plan:
- tier: {plan.tier.lower()}
- user_quota_left_this_period: {quota_left(plan.max_papers_per_month, papers_this_month)}
- max_variants: {plan.max_variants}
- include_answers: {str(bool(plan.include_answers)).lower()}

request:
- exam_type: {request.get('exam_type')}
- total_marks: {request.get('total_marks')}
- duration_minutes: {request.get('duration_minutes')}
- topics_include: {json.dumps(request.get('topics_include') or [])}
- topics_exclude: {json.dumps(request.get('topics_exclude') or [])}
- difficulty_pref: {_json_or_null(request.get('difficulty_pref'))}
- seed: {request.get('seed') or 'null'}
- variant_count: {variant_count}
- style_overrides: {request.get('style_overrides') or 'null'}

policy:
- originality_target_pct: {ORIGINALITY_TARGET_PCT}
- citation_required: true
- language: {course.language}
- safety_flags: []

context.rag (top_k={len(context)}):
{chr(10).join(rag_lines) if rag_lines else '[]'}

Respond with exactly one JSON object following the schema."""


def build_grading_prompt(
    paper_variant_id: str,
    marking_scheme: Any,
    extracted_answers: list[dict[str, str]],
) -> str:
    """Render the user message for grading one submission."""
    return f"""Grade the student's answers according to the generated paper with ID {paper_variant_id} and the marking scheme/rubric provided.

Inputs:
- paper_variant_id: {paper_variant_id}
- marking_scheme: {json.dumps(marking_scheme)}
- extracted_answers: {json.dumps(extracted_answers)}
- course_policy: {json.dumps(COURSE_POLICY)}

Ensure:
- All scoring follows the rubric.
- Add constructive strengths & improvement_suggestions.
- Return only JSON per the grading schema."""


def parse_model_json(content: Optional[str]) -> dict[str, Any]:
    """Parse a model reply into a dict, tolerating markdown code fences."""
    if not content or not content.strip():
        raise GenerationError("Empty response from model")

    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        if lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Model returned invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerationError("Model returned JSON that is not an object")
    return data


def get_chat_model(temperature: float, max_tokens: int) -> ChatOpenAI:
    return ChatOpenAI(
        model=GROQ_MODEL,
        api_key=GROQ_API_KEY or "missing",
        base_url=GROQ_BASE_URL,
        temperature=temperature,
        max_tokens=max_tokens,
    )


async def _complete(system_prompt: str, prompt: str, temperature: float, max_tokens: int) -> str:
    llm = get_chat_model(temperature, max_tokens)
    try:
        result = await llm.ainvoke([
            SystemMessage(content=system_prompt),
            HumanMessage(content=prompt),
        ])
    except Exception as e:
        logger.error("Groq completion failed: %s", e)
        raise GenerationError(str(e)) from e
    return result.content


async def generate_paper(prompt: str) -> str:
    return await _complete(PAPER_GENERATION_PROMPT, prompt, temperature=0.2, max_tokens=4000)


async def grade_paper(prompt: str) -> str:
    return await _complete(GRADING_PROMPT, prompt, temperature=0.1, max_tokens=3000)
