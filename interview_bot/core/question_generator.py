"""
Interview Question Bot — Question Generator.

Asks the configured LLM for one interview question and its answer, in the
requested category and language, steering it away from recent topics.
Implements the QuestionGenerator port; it knows nothing about users, so the
caller resolves and passes the API key.
"""

from __future__ import annotations

import logging

from interview_bot.core.llm import complete
from interview_bot.core.response_parser import parse_response
from interview_bot.data.models import QuestionCandidate
from interview_bot.ports.generator_port import (
    GenerationError,
    InvalidApiKey,
    NoApiKeyAvailable,
    UnparsableResponse,
)

logger = logging.getLogger(__name__)

CATEGORIES: tuple[str, ...] = ("javascript", "typescript", "react")

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_SYSTEM_PROMPTS = {
    "en": """\
You write technical interview questions for senior engineers.
Respond ONLY with this JSON structure, no prose around it:

{"question": "Your interview question here (clear and concise)", "answer": "Concise and correct answer, explaining the key concept or solution"}

Ensure that:
1. The question is typical for a technical interview.
2. The answer is direct and accurate.
3. If code is involved, it's a short and clear example in a fenced code block inside the answer.
""",
    "es": """\
Escribes preguntas de entrevista técnica para ingenieros senior.
Responde SOLO con esta estructura JSON, sin texto alrededor:

{"question": "Tu pregunta de entrevista en español aquí (clara y concisa)", "answer": "Respuesta concisa y correcta, explicando el concepto clave o la solución"}

Asegúrate que:
1. La pregunta sea típica de una entrevista técnica.
2. La respuesta sea directa y precisa.
3. Si es código, que sea un ejemplo breve y claro dentro de un bloque de código en la respuesta.
""",
}

_TASK_PROMPTS = {
    "en": (
        "Generate a senior-level interview question about {category} that can be "
        "discussed and solved in about 5 minutes. Avoid overly complex scenarios or "
        "large system design questions. Focus on a specific concept, a small coding "
        "problem, or a clear explanation."
    ),
    "es": (
        "Genera una pregunta de entrevista de nivel senior sobre {category} que se "
        "pueda discutir y resolver en aproximadamente 5 minutos. Evita escenarios "
        "excesivamente complejos o que requieran diseñar sistemas grandes. Enfócate "
        "en un concepto específico, un pequeño problema de código o una explicación clara."
    ),
}

_AVOID_PROMPTS = {
    "en": (
        "CRITICAL INSTRUCTION: Ensure the new question is substantially different from "
        "the following topics recently asked to this user. Do NOT repeat or rephrase "
        "questions related to these topics:"
    ),
    "es": (
        "INSTRUCCIÓN CRÍTICA: La nueva pregunta debe ser sustancialmente diferente de "
        "los siguientes temas preguntados recientemente a este usuario. NO repitas ni "
        "reformules preguntas relacionadas con estos temas:"
    ),
}

# ---------------------------------------------------------------------------
# Built-in fallback, used when generation fails for any reason except a
# missing key
# ---------------------------------------------------------------------------

_FALLBACKS = {
    "en": (
        "What is a closure in JavaScript and how is it used?",
        "A closure is a function that has access to variables from its outer scope, "
        "even after the outer function has finished executing. This happens because "
        "the inner function keeps a reference to the lexical scope of the outer function.\n\n"
        "Example:\n```javascript\nfunction createCounter() {\n  let count = 0;\n"
        "  return function() {\n    count++;\n    return count;\n  };\n}\n\n"
        "const increment = createCounter();\nconsole.log(increment()); // 1\n"
        "console.log(increment()); // 2\n```\n\n"
        "The inner function returned by `createCounter` forms a closure over `count`, "
        "so it can read and modify it after `createCounter` has returned.",
    ),
    "es": (
        "¿Qué es un closure en JavaScript y cómo se utiliza?",
        "Un closure es una función que tiene acceso a variables de su ámbito exterior, "
        "incluso después de que la función exterior ha terminado de ejecutarse. Esto sucede "
        "porque la función interna mantiene una referencia al ámbito léxico de la función exterior.\n\n"
        "Ejemplo:\n```javascript\nfunction crearContador() {\n  let contador = 0;\n"
        "  return function() {\n    contador++;\n    return contador;\n  };\n}\n\n"
        "const incrementar = crearContador();\nconsole.log(incrementar()); // 1\n"
        "console.log(incrementar()); // 2\n```\n\n"
        "La función interna retornada por `crearContador` forma un closure sobre `contador`, "
        "permitiéndole leerla y modificarla después de que `crearContador` haya terminado.",
    ),
}

_INVALID_KEY_MARKERS = (
    "api key not valid",
    "api_key_invalid",
    "invalid api key",
    "invalid x-api-key",
    "incorrect api key",
    "api key expired",
)


def fallback_candidate(language: str = "en", category: str | None = None) -> QuestionCandidate:
    """Return the built-in question/answer pair for a language."""
    question, answer = _FALLBACKS.get(language, _FALLBACKS["en"])
    return QuestionCandidate(question=question, answer=answer, category=category or "javascript")


def build_prompt(category: str, avoid_hints: list[str], language: str = "en") -> tuple[str, str]:
    """Return (system, user_message) for one generation request."""
    lang = language if language in _SYSTEM_PROMPTS else "en"
    user_message = _TASK_PROMPTS[lang].format(category=category)
    if avoid_hints:
        user_message += "\n\n" + _AVOID_PROMPTS[lang] + "\n- " + "\n- ".join(avoid_hints)
    return _SYSTEM_PROMPTS[lang], user_message


def _is_invalid_key_error(exc: Exception) -> bool:
    name = type(exc).__name__
    if name in ("AuthenticationError", "PermissionDeniedError", "Unauthenticated"):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _INVALID_KEY_MARKERS)


class LLMQuestionGenerator:
    """QuestionGenerator backed by the provider-agnostic `complete()`."""

    def __init__(self, max_tokens: int = 2048) -> None:
        self._max_tokens = max_tokens

    async def generate(
        self,
        category: str,
        avoid_hints: list[str],
        language: str = "en",
        api_key: str | None = None,
    ) -> QuestionCandidate:
        """Produce one candidate.

        Raises:
            NoApiKeyAvailable: no key was supplied.
            InvalidApiKey: the provider rejected the key.
            UnparsableResponse: the reply held no recoverable pair.
            GenerationError: any other provider failure (quota, network...).
        """
        if not api_key:
            raise NoApiKeyAvailable("API key required but not available")

        system, user_message = build_prompt(category, avoid_hints, language)
        try:
            raw = await complete(
                system=system,
                user_message=user_message,
                api_key=api_key,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            if _is_invalid_key_error(exc):
                raise InvalidApiKey("API key is invalid or has expired") from exc
            raise GenerationError(f"LLM request failed: {exc}") from exc

        result = parse_response(raw)
        if not result.ok:
            raise UnparsableResponse("Failed to parse AI response")

        logger.debug("Generated %s question (%s): %s", category, result.status.value, result.question[:80])
        return QuestionCandidate(question=result.question, answer=result.answer, category=category)
