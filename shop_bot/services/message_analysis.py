"""
Message Analysis.

Answers free-text turns outside the structured purchase steps: questions
about the product, delivery, the game itself... The analyzer returns the
reply text, suggested choices, an optional next exploration step and a
buying-intent score in [0, 1] that the orchestrator uses to attach product
recommendations.

Providers:
    - OpenAIMessageAnalyzer: structured output via instructor over OpenAI.

Usage:
    from shop_bot.services.message_analysis import get_message_analyzer

    analyzer = get_message_analyzer()
    analysis = analyzer.analyze("C'est pour quel âge ?", product_context, history)
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import instructor
from instructor.exceptions import InstructorRetryException
from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field

from ..config import BOT_NAME, OPENAI_MODEL
from ..exceptions import MessageAnalysisError

logger = logging.getLogger(__name__)


class MessageAnalysis(BaseModel):
    """Structured answer to a free-text message."""
    content: str = Field(description="Reply to the shopper, in French, 1 to 4 short sentences")
    choices: List[str] = Field(default_factory=list, description="Up to 3 short follow-up buttons")
    next_step: Optional[str] = Field(
        default=None,
        description="One of initial, description, testimonials, game_rules, or null to stay",
    )
    buying_intent: float = Field(
        default=0.0, ge=0.0, le=1.0,
        description="How close the shopper is to buying, from 0 (browsing) to 1 (ready to buy)",
    )
    recommendations: List[str] = Field(default_factory=list, description="Product ids worth suggesting")


class MessageAnalyzer(ABC):
    """Abstract base class for free-text responders."""

    @abstractmethod
    def analyze(
        self,
        user_message: str,
        product_context: Dict[str, Any],
        history: List[Dict[str, str]],
    ) -> MessageAnalysis:
        """
        Answer one free-text message.

        Raises:
            MessageAnalysisError: when no answer can be produced.
        """
        pass


SYSTEM_PROMPT = """
Tu es {bot_name}, l'assistante d'achat d'une boutique en ligne de jeux de société au Sénégal.
Tu réponds en français, de façon chaleureuse et concise (4 phrases maximum).

PRODUIT ACTUEL (JSON):
{product}

Règles:
- Ne parle que du produit, de la boutique, de la livraison et du paiement
  (Wave, Orange Money, carte bancaire ou paiement à la livraison).
- N'invente jamais de prix, de stock ni de délai absent du contexte.
- Livraison: 24 à 48h à Dakar, 3 à 5 jours ouvrés ailleurs.
- Si la personne semble prête à acheter, propose le bouton "Je veux l'acheter maintenant".
- buying_intent: 0 pour une simple curiosité, au-dessus de 0.7 quand la personne
  demande comment commander, le prix final ou la livraison chez elle.
"""


class OpenAIMessageAnalyzer(MessageAnalyzer):
    """Message analyzer backed by the OpenAI chat API with structured output."""

    def __init__(self, model: str = OPENAI_MODEL, api_key: Optional[str] = None):
        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY not set")
        self.model = model
        self.client = instructor.from_openai(OpenAI(api_key=api_key))

    def analyze(self, user_message, product_context, history) -> MessageAnalysis:
        system = SYSTEM_PROMPT.format(
            bot_name=BOT_NAME,
            product=json.dumps(product_context, ensure_ascii=False),
        )
        messages = [{"role": "system", "content": system}]
        messages.extend(
            {"role": "assistant" if m["role"] == "assistant" else "user", "content": m["content"]}
            for m in history
        )
        messages.append({"role": "user", "content": user_message})

        try:
            return self.client.chat.completions.create(
                model=self.model,
                response_model=MessageAnalysis,
                messages=messages,
                temperature=0,
                max_retries=1,
            )
        except (OpenAIError, InstructorRetryException) as e:
            logger.error("Message analysis failed: %s", e)
            raise MessageAnalysisError(str(e)) from e


# Cached analyzer instance
_analyzer_instance: Optional[MessageAnalyzer] = None


def get_message_analyzer() -> MessageAnalyzer:
    """
    Get the configured message analyzer.

    Uses a singleton pattern - the same analyzer instance is returned
    for subsequent calls.
    """
    global _analyzer_instance

    if _analyzer_instance is None:
        _analyzer_instance = OpenAIMessageAnalyzer()
        logger.info("Initialized message analyzer with model %s", _analyzer_instance.model)
    return _analyzer_instance
