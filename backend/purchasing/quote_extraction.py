"""
Quote extraction through an OpenAI-compatible chat-completions endpoint.

The model is forced to call the `extract_quote_data` tool, whose arguments
carry the structured quote. Transient failures are retried with exponential
backoff; rate limiting (429) and exhausted credits (402) are reported at once.
Nothing is persisted here: callers decide what to do with the result.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

TOOL_NAME = 'extract_quote_data'

SYSTEM_PROMPT = (
    "Tu es un assistant spécialisé dans l'extraction de données de devis PDF.\n"
    "Analyse le document et extrait les informations suivantes :\n"
    "- Le fournisseur et la référence du devis\n"
    "- Les lignes de commande avec : nom du matériel, quantité, prix unitaire HT\n"
    "- Le montant total TTC\n"
    "Si tu ne peux pas extraire certaines informations, utilise des valeurs par défaut raisonnables."
)

USER_PROMPT = "Analyse ce devis et extrait les lignes de commande et le montant total."

TOOL_DEFINITION = {
    'type': 'function',
    'function': {
        'name': TOOL_NAME,
        'description': "Extrait les données structurées d'un devis",
        'parameters': {
            'type': 'object',
            'properties': {
                'supplier': {'type': 'string'},
                'reference': {'type': 'string'},
                'lines': {
                    'type': 'array',
                    'items': {
                        'type': 'object',
                        'properties': {
                            'materialName': {'type': 'string'},
                            'quantity': {'type': 'number'},
                            'unitPrice': {'type': 'number'},
                        },
                        'required': ['materialName', 'quantity', 'unitPrice'],
                        'additionalProperties': False,
                    },
                },
                'totalAmount': {'type': 'number'},
            },
            'required': ['lines', 'totalAmount'],
            'additionalProperties': False,
        },
    },
}


class QuoteExtractionError(Exception):
    """Base class; `status_code` is the HTTP status reported to the client"""
    status_code = 503
    default_message = "Le service d'analyse de devis est indisponible, veuillez réessayer plus tard."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class QuoteRateLimitError(QuoteExtractionError):
    status_code = 429
    default_message = "Limite de requêtes dépassée, veuillez réessayer plus tard."


class QuoteCreditsError(QuoteExtractionError):
    status_code = 402
    default_message = "Crédits insuffisants, veuillez ajouter des crédits à votre espace de travail."


class QuoteServiceUnavailableError(QuoteExtractionError):
    status_code = 503


class QuoteExtractionNotConfigured(QuoteExtractionError):
    status_code = 503
    default_message = "L'analyse de devis n'est pas configurée."


class _TransientError(Exception):
    """A failed attempt worth retrying"""


@dataclass
class ExtractedLine:
    material_name: str
    quantity: int
    unit_price: Decimal

    def as_dict(self):
        return {
            'material_name': self.material_name,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
        }


@dataclass
class ExtractedQuote:
    supplier: Optional[str] = None
    reference: Optional[str] = None
    lines: List[ExtractedLine] = field(default_factory=list)
    total_amount: Decimal = Decimal('0.00')

    def as_dict(self):
        return {
            'supplier': self.supplier,
            'reference': self.reference,
            'lines': [line.as_dict() for line in self.lines],
            'total_amount': str(self.total_amount),
        }


def _to_decimal(value):
    try:
        return Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal('0.00')


def _to_quantity(value):
    try:
        quantity = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return 1
    return max(quantity, 1)


def parse_quote_payload(payload):
    """Normalize the tool arguments into an ExtractedQuote"""
    if not isinstance(payload, dict):
        raise ValueError("Quote payload is not an object")
    raw_lines = payload.get('lines')
    if not isinstance(raw_lines, list):
        raise ValueError("Quote payload has no lines array")

    lines = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            continue
        name = str(raw.get('materialName') or raw.get('material_name') or '').strip()
        if not name:
            continue
        lines.append(ExtractedLine(
            material_name=name,
            quantity=_to_quantity(raw.get('quantity', 1)),
            unit_price=_to_decimal(raw.get('unitPrice', raw.get('unit_price', 0))),
        ))

    supplier = str(payload.get('supplier') or '').strip() or None
    reference = str(payload.get('reference') or '').strip() or None
    return ExtractedQuote(
        supplier=supplier,
        reference=reference,
        lines=lines,
        total_amount=_to_decimal(payload.get('totalAmount', payload.get('total_amount', 0))),
    )


def parse_completion(data):
    """
    Read the structured quote out of a chat-completions response: the tool
    call arguments first, JSON message content as a fallback.
    """
    try:
        message = data['choices'][0]['message']
    except (KeyError, IndexError, TypeError):
        raise ValueError("Response has no message")
    if not isinstance(message, dict):
        raise ValueError("Response message is not an object")

    tool_calls = message.get('tool_calls') or []
    if tool_calls:
        if not isinstance(tool_calls, list) or not isinstance(tool_calls[0], dict):
            raise ValueError("Malformed tool call")
        function = tool_calls[0].get('function') or {}
        if not isinstance(function, dict):
            raise ValueError("Malformed tool call function")
        arguments = function.get('arguments')
        if arguments:
            payload = json.loads(arguments) if isinstance(arguments, str) else arguments
            return parse_quote_payload(payload)

    content = message.get('content')
    if content:
        if not isinstance(content, str):
            raise ValueError("Response content is not text")
        content = content.strip()
        # Strip a markdown code fence if the model added one
        if content.startswith('```'):
            content = content.strip('`')
            if content.lower().startswith('json'):
                content = content[4:]
        return parse_quote_payload(json.loads(content))

    raise ValueError("Response has neither tool call nor content")


class QuoteExtractionClient:
    """
    Client for the quote extraction endpoint.

    `session` and `sleep` can be injected, mainly for tests.
    """

    def __init__(self, api_url=None, api_key=None, model=None, timeout=None,
                 max_attempts=None, backoff_seconds=None, session=None, sleep=None):
        self.api_url = api_url or settings.QUOTE_EXTRACTION_API_URL
        self.api_key = api_key if api_key is not None else settings.QUOTE_EXTRACTION_API_KEY
        self.model = model or settings.QUOTE_EXTRACTION_MODEL
        self.timeout = timeout or settings.QUOTE_EXTRACTION_TIMEOUT
        self.max_attempts = max_attempts or settings.QUOTE_EXTRACTION_MAX_ATTEMPTS
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.QUOTE_EXTRACTION_BACKOFF_SECONDS
        self.session = session or requests.Session()
        self.sleep = sleep or time.sleep

    @property
    def is_configured(self):
        return bool(self.api_url and self.api_key)

    def build_payload(self, pdf_text=None, pdf_base64=None):
        if pdf_base64:
            user_content = [
                {'type': 'text', 'text': USER_PROMPT},
                {'type': 'image_url', 'image_url': {'url': f'data:application/pdf;base64,{pdf_base64}'}},
            ]
        else:
            user_content = f"{USER_PROMPT}\n\n{pdf_text}"
        return {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': user_content},
            ],
            'tools': [TOOL_DEFINITION],
            'tool_choice': {'type': 'function', 'function': {'name': TOOL_NAME}},
        }

    def _attempt(self, payload):
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }
        try:
            response = self.session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise _TransientError("request timed out")
        except requests.exceptions.RequestException as e:
            raise _TransientError(f"request failed: {str(e)}")

        if response.status_code == 429:
            raise QuoteRateLimitError()
        if response.status_code == 402:
            raise QuoteCreditsError()
        if response.status_code != 200:
            raise _TransientError(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            return parse_completion(response.json())
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            raise _TransientError(f"unparsable response: {str(e)}")

    def extract(self, pdf_text=None, pdf_base64=None):
        """
        Extract a structured quote from PDF text or a base64-encoded PDF.

        Raises QuoteRateLimitError / QuoteCreditsError without retrying, and
        QuoteServiceUnavailableError once every attempt has failed.
        """
        if not (pdf_text and pdf_text.strip()) and not pdf_base64:
            raise ValueError("pdf_text or pdf_base64 is required")
        if not self.is_configured:
            raise QuoteExtractionNotConfigured()

        payload = self.build_payload(pdf_text=pdf_text, pdf_base64=pdf_base64)
        delay = self.backoff_seconds
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                quote = self._attempt(payload)
                logger.info(f"Quote extracted on attempt {attempt}: {len(quote.lines)} line(s)")
                return quote
            except _TransientError as e:
                last_error = e
                logger.warning(f"Quote extraction attempt {attempt}/{self.max_attempts} failed: {str(e)}")
                if attempt < self.max_attempts:
                    self.sleep(delay)
                    delay *= 2
            except QuoteExtractionError as e:
                logger.warning(f"Quote extraction aborted: {e.message}")
                raise

        logger.error(f"Quote extraction failed after {self.max_attempts} attempts: {last_error}")
        raise QuoteServiceUnavailableError()
