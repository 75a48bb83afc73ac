"""
AI Assistant module for DCAM Classes
Gemini-backed flows: learning paths, MCQ extraction and notice validation
"""
import base64
import json
import os
import re
from typing import Any, Dict, List, Optional

from utils.logger import logger

MODEL_NAMES = [
    'gemini-2.5-flash',
    'gemini-2.5-pro',
    'gemini-2.0-flash',
    'gemini-flash-latest',
]

NOTICE_MODEL_NAMES = ['gemini-2.5-pro', 'gemini-2.5-flash']


class AIUnavailable(Exception):
    """Raised when no Gemini client can be created or every model fails"""


class AIAssistant:
    """Thin wrapper over the google-genai client with a model fallback list"""

    def __init__(self, api_key: Optional[str] = None, client: Any = None):
        self.ai_available = False
        self.client = client
        self.error_message = None
        self.model_name = None

        if client is not None:
            self.ai_available = True
            return

        api_key = (api_key or os.getenv('GEMINI_API_KEY') or '').strip()
        if not api_key:
            self.error_message = "GEMINI_API_KEY environment variable is not set or is empty"
            logger.warning("ai_unavailable", reason=self.error_message)
            return

        try:
            from google import genai
            self.client = genai.Client(api_key=api_key)
            self.ai_available = True
            logger.info("ai_client_initialized")
        except Exception as e:
            self.error_message = f"Failed to initialize Gemini client: {str(e)}"
            logger.error("ai_init_error", error=str(e))

    def generate(self, contents, models: Optional[List[str]] = None) -> str:
        """Return the first non-empty text response, trying each model in order"""
        if not self.ai_available:
            raise AIUnavailable(self.error_message or 'AI is not available')

        last_error = None
        for model_name in models or MODEL_NAMES:
            try:
                response = self.client.models.generate_content(model=model_name, contents=contents)
                text = getattr(response, 'text', None)
                if text:
                    self.model_name = model_name
                    return text
                logger.warning("ai_empty_response", model=model_name)
            except Exception as e:
                last_error = e
                logger.warning("ai_model_failed", model=model_name, error=str(e))
        raise AIUnavailable(f"All Gemini models failed: {last_error}")

    def generate_json(self, contents, models: Optional[List[str]] = None) -> Dict[str, Any]:
        return parse_json_reply(self.generate(contents, models))


def parse_json_reply(text: str) -> Dict[str, Any]:
    """Pull the JSON object out of a model reply, tolerating ``` fences"""
    cleaned = re.sub(r'^```(?:json)?\s*|\s*```$', '', (text or '').strip())
    start, end = cleaned.find('{'), cleaned.rfind('}')
    if start == -1 or end == -1:
        raise ValueError('Model reply did not contain a JSON object')
    return json.loads(cleaned[start:end + 1])


_assistant = None


def get_assistant() -> AIAssistant:
    global _assistant
    if _assistant is None:
        _assistant = AIAssistant()
    return _assistant


def set_assistant(assistant: Optional[AIAssistant]):
    global _assistant
    _assistant = assistant


# ============================================================================
# FLOWS
# ============================================================================

def personalized_learning_path(weak_subjects: List[str], assistant: Optional[AIAssistant] = None) -> Dict[str, Any]:
    """Recommend topics and resources for the student's weak subjects"""
    assistant = assistant or get_assistant()
    prompt = (
        "You are a JEE mentor at DCAM Classes. A student is weak in these subjects: "
        f"{', '.join(weak_subjects) or 'none listed'}.\n"
        "Reply with JSON only, shaped as "
        '{"recommendedTopics": [{"name": "...", "reason": "..."}], '
        '"suggestedResources": [{"title": "...", "reason": "..."}]}. '
        "Suggest 3 to 5 topics and 2 to 4 resources."
    )
    try:
        data = assistant.generate_json(prompt)
        return {
            'recommendedTopics': [
                {'name': str(t.get('name', '')), 'reason': str(t.get('reason', ''))}
                for t in data.get('recommendedTopics') or [] if isinstance(t, dict)
            ],
            'suggestedResources': [
                {'title': str(r.get('title', '')), 'reason': str(r.get('reason', ''))}
                for r in data.get('suggestedResources') or [] if isinstance(r, dict)
            ],
        }
    except Exception as e:
        logger.error("learning_path_error", error=str(e))
        return {
            'recommendedTopics': [],
            'suggestedResources': [],
            'error': 'Could not generate a learning path right now. Please try again later.',
        }


def _decode_data_uri(data_uri: str):
    match = re.match(r'^data:([\w/+.-]+);base64,(.+)$', data_uri or '', flags=re.S)
    if not match:
        raise ValueError('Expected a base64 data URI')
    return match.group(1), base64.b64decode(match.group(2))


def extract_mcq_from_image(data_uri: str, assistant: Optional[AIAssistant] = None) -> Dict[str, Any]:
    """Read a photographed MCQ into question text and four options"""
    assistant = assistant or get_assistant()
    try:
        from google.genai import types
        mime_type, payload = _decode_data_uri(data_uri)
        prompt = (
            "Extract the multiple-choice question from this image. Reply with JSON only: "
            '{"questionText": "...", "options": ["...", "...", "...", "..."]}. '
            "Keep any math as LaTeX."
        )
        data = assistant.generate_json([types.Part.from_bytes(data=payload, mime_type=mime_type), prompt])
        options = [str(o) for o in (data.get('options') or [])][:4]
        options += [''] * (4 - len(options))
        return {'questionText': str(data.get('questionText', '')), 'options': options}
    except Exception as e:
        logger.error("mcq_extraction_error", error=str(e))
        return {'questionText': '', 'options': [], 'error': 'Could not extract a question from this image.'}


def validate_notice_window(exam_name, verification, official_info_url, official_apply_url,
                           feed_candidates, assistant: Optional[AIAssistant] = None):
    """Ask Gemini whether an application window is really open; None when AI is off"""
    assistant = assistant or get_assistant()
    if not assistant.ai_available:
        return None
    headlines = [
        {'title': c.get('title'), 'formCloseDate': c.get('formCloseDate'), 'source': c.get('source')}
        for c in feed_candidates[:6]
    ]
    prompt = (
        f"Exam: {exam_name}\nOfficial info page: {official_info_url}\n"
        f"Official apply page: {official_apply_url}\n"
        f"Detected last date: {verification.get('lastDate')}\n"
        f"Evidence: {'; '.join(verification.get('evidence') or [])}\n"
        f"Official page text:\n{verification.get('textSample', '')}\n"
        f"News headlines: {json.dumps(headlines)}\n\n"
        "Decide whether the application form is open today. Reply with JSON only: "
        '{"include": true|false, "confidence": 0..1, "reasoning": "one sentence", '
        '"normalizedLastDate": "d Month yyyy" or null}'
    )
    data = assistant.generate_json(prompt, NOTICE_MODEL_NAMES)
    return {
        'include': bool(data.get('include')),
        'confidence': float(data.get('confidence') or 0),
        'reasoning': str(data.get('reasoning') or ''),
        'normalizedLastDate': data.get('normalizedLastDate') or None,
    }
