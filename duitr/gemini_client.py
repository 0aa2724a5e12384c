from __future__ import annotations

import google.generativeai as genai
import structlog

from duitr.finance_insight import FinanceSummary, build_insight_prompt, build_question_prompt
from duitr.transaction_parser import ParseResult, build_prompt, parse_model_answer

logger = structlog.get_logger(__name__)

EMPTY_ANSWERS = {
    "id": "Gagal mendapatkan insight.",
    "en": "Could not get an insight.",
}


class AIUnavailableError(RuntimeError):
    """Raised when no model is configured or the model call fails."""


class GeminiClient:
    """Lazily configured Gemini model; tests pass ``model`` directly."""

    def __init__(
        self,
        api_key: str | None,
        model_name: str = "gemini-1.5-flash",
        model=None,
        temperature: float = 0.1,
    ):
        self._api_key = api_key
        self._model_name = model_name
        self._model = model
        self._temperature = temperature

    @property
    def available(self) -> bool:
        return self._model is not None or bool(self._api_key)

    def _get_model(self):
        if self._model is None:
            if not self._api_key:
                raise AIUnavailableError("AI service is not configured.")
            genai.configure(api_key=self._api_key)
            self._model = genai.GenerativeModel(
                self._model_name,
                generation_config={"temperature": self._temperature},
            )
        return self._model

    def generate(self, prompt: str) -> str:
        model = self._get_model()
        try:
            response = model.generate_content(prompt)
            return (response.text or "").strip()
        except Exception as exc:
            logger.error("ai_request_failed", model=self._model_name, error=str(exc))
            raise AIUnavailableError("AI service request failed.") from exc


class GeminiTransactionParser(GeminiClient):
    """Asks Gemini to read free-form notes and normalises its answer."""

    def parse(self, user_input: str, language: str = "id") -> ParseResult:
        text = self.generate(build_prompt(user_input, language))
        result = parse_model_answer(text)
        logger.info(
            "ai_parse_completed",
            valid_count=len(result.valid),
            invalid_count=len(result.invalid),
        )
        return result


class GeminiFinanceAdvisor(GeminiClient):
    """Writes an evaluation of a period's income and spending, and answers follow-ups."""

    def __init__(self, api_key: str | None, model_name: str = "gemini-1.5-flash", model=None):
        super().__init__(api_key, model_name=model_name, model=model, temperature=0.7)

    def insight(self, summary: FinanceSummary, language: str = "id") -> str:
        text = self.generate(build_insight_prompt(summary, language))
        logger.info("ai_insight_completed", length=len(text))
        return text or EMPTY_ANSWERS.get(language, EMPTY_ANSWERS["id"])

    def ask(self, question: str, summary: FinanceSummary, language: str = "id") -> str:
        text = self.generate(build_question_prompt(summary, question, language))
        logger.info("ai_question_answered", length=len(text))
        return text or EMPTY_ANSWERS.get(language, EMPTY_ANSWERS["id"])
