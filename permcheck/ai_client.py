#!/usr/bin/env python3
"""
AI Client - Claude access for the LLM resolution oracle

Bedrock is tried first; without it the Anthropic API is used when
ANTHROPIC_API_KEY is set. Token usage is accumulated per client and for the
whole session so the CLI can print a cost summary at exit.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Claude Sonnet pricing (USD per million tokens)
PRICING = {
    'input': 3.00,
    'output': 15.00
}


@dataclass
class AIUsage:
    """Token and cost totals"""
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def record(self, input_tokens: int, output_tokens: int) -> float:
        """Add one call and return its cost"""
        cost = (input_tokens * PRICING['input'] + output_tokens * PRICING['output']) / 1_000_000
        self.calls += 1
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.total_cost += cost
        return cost


# Session-wide usage shared by every AIClient
_session_usage: Optional[AIUsage] = None


def get_session_usage() -> AIUsage:
    global _session_usage
    if _session_usage is None:
        _session_usage = AIUsage()
    return _session_usage


def print_ai_usage_summary(tool_name: str = "permcheck"):
    """Print AI usage for the current session"""
    usage = get_session_usage()

    print(f"\n{'='*60}")
    print(f"AI USAGE SUMMARY - {tool_name}")
    print(f"{'='*60}")
    if usage.calls == 0:
        print("No AI calls made (static oracle or nothing to resolve)")
    else:
        print(f"Oracle calls:       {usage.calls}")
        print(f"Tokens:             {usage.input_tokens:,} in / {usage.output_tokens:,} out")
        print(f"Total cost:         ${usage.total_cost:.4f}")
    print(f"{'='*60}\n")


class AIClient:
    """Claude client over Bedrock or the Anthropic API"""

    BEDROCK_MODEL_ID = os.environ.get('PERMCHECK_BEDROCK_MODEL_ID', 'us.anthropic.claude-3-5-sonnet-20241022-v2:0')
    ANTHROPIC_MODEL = os.environ.get('PERMCHECK_ANTHROPIC_MODEL', 'claude-3-5-sonnet-20241022')
    BEDROCK_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    def __init__(self, use_bedrock: bool = True, timeout: float = 120.0, debug: bool = False):
        """
        Args:
            use_bedrock: Try AWS Bedrock before the Anthropic API
            timeout: Per-request timeout in seconds (oracle calls block on this)
            debug: Print token and cost lines for every call
        """
        self.timeout = timeout
        self.debug = debug
        self.usage = AIUsage()

        self.bedrock_client = self._build_bedrock_client() if use_bedrock else None
        self.anthropic_client = None if self.bedrock_client else self._build_anthropic_client()

    def _build_bedrock_client(self):
        try:
            import boto3
            from botocore.config import Config
        except ImportError as e:
            logger.debug(f"[AI CLIENT] boto3 unavailable: {e}")
            return None

        try:
            client = boto3.client(
                'bedrock-runtime',
                region_name=self.BEDROCK_REGION,
                config=Config(read_timeout=self.timeout, connect_timeout=min(self.timeout, 10)),
            )
        except Exception as e:
            logger.debug(f"[AI CLIENT] Bedrock not available: {e}")
            return None
        logger.debug(f"[AI CLIENT] Bedrock client ready ({self.BEDROCK_REGION})")
        return client

    def _build_anthropic_client(self):
        api_key = os.environ.get('ANTHROPIC_API_KEY')
        if not api_key:
            return None
        try:
            from anthropic import Anthropic
        except ImportError as e:
            logger.debug(f"[AI CLIENT] anthropic unavailable: {e}")
            return None
        logger.debug("[AI CLIENT] Anthropic API client ready")
        return Anthropic(api_key=api_key, timeout=self.timeout)

    def is_available(self) -> bool:
        return self.bedrock_client is not None or self.anthropic_client is not None

    def call_claude(self, prompt: str, max_tokens: int = 1000, temperature: float = 0.0) -> str:
        """
        Send one user prompt and return the stripped response text

        Raises:
            RuntimeError: If neither Bedrock nor the Anthropic API is configured
        """
        if not self.is_available():
            raise RuntimeError("No AI client available (Bedrock or Anthropic API)")

        messages = [{"role": "user", "content": prompt}]
        if self.bedrock_client is not None:
            text, input_tokens, output_tokens = self._invoke_bedrock(messages, max_tokens, temperature)
            source = "Bedrock"
        else:
            text, input_tokens, output_tokens = self._invoke_anthropic(messages, max_tokens, temperature)
            source = "Anthropic API"

        self._track_usage(input_tokens, output_tokens, source)
        return text.strip()

    def _invoke_bedrock(self, messages, max_tokens: int, temperature: float):
        response = self.bedrock_client.invoke_model(
            modelId=self.BEDROCK_MODEL_ID,
            body=json.dumps({
                "anthropic_version": "bedrock-2023-05-31",
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": messages,
            }),
        )
        payload = json.loads(response['body'].read())
        usage = payload.get('usage', {})
        return payload['content'][0]['text'], usage.get('input_tokens', 0), usage.get('output_tokens', 0)

    def _invoke_anthropic(self, messages, max_tokens: int, temperature: float):
        response = self.anthropic_client.messages.create(
            model=self.ANTHROPIC_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=messages,
        )
        return response.content[0].text, response.usage.input_tokens, response.usage.output_tokens

    def _track_usage(self, input_tokens: int, output_tokens: int, source: str):
        cost = self.usage.record(input_tokens, output_tokens)
        get_session_usage().record(input_tokens, output_tokens)

        if self.debug:
            print(f"[AI TOKENS] {source}: {input_tokens:,} in + {output_tokens:,} out")
            print(f"[AI COST] This call: ${cost:.4f}")

    def get_usage_summary(self) -> Dict[str, Any]:
        summary = asdict(self.usage)
        summary['total_tokens'] = self.usage.total_tokens
        return summary
