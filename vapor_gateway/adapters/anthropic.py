"""
Anthropic Messages API 适配器
"""

from typing import Any, Dict, List, Optional, Union

from ..helpers import generate_id
from ..schemas import ChannelConfig, ChatCompletionRequest, Message, TokenUsage, VendorType
from ..token_estimator import text_units
from .base import StreamState, VendorAdapter, VendorRequest


class AnthropicAdapter(VendorAdapter):
    vendor = VendorType.ANTHROPIC
    finish_reasons = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "length",
        "refusal": "content_filter",
    }

    def __init__(self, default_max_tokens: int = 4096):
        super().__init__()
        # Anthropic 要求必须提供 max_tokens
        self.default_max_tokens = default_max_tokens

    # ------------------------------------------------------------------
    # canonical -> Anthropic
    # ------------------------------------------------------------------

    def _content_blocks(self, message: Message) -> Union[str, List[Dict[str, Any]]]:
        if message.content is None:
            return ""
        if isinstance(message.content, str):
            return message.content

        blocks = []
        for part in message.content:
            if part.type == "text":
                blocks.append({"type": "text", "text": part.text or ""})
            elif part.type == "image_url" and part.image_url:
                data_url = self.parser.parse_data_url(part.image_url.url)
                if data_url:
                    media_type, data = data_url
                    source = {"type": "base64", "media_type": media_type, "data": data}
                else:
                    source = {"type": "url", "url": part.image_url.url}
                blocks.append({"type": "image", "source": source})
        return blocks

    def to_vendor(self, request: ChatCompletionRequest, channel: ChannelConfig) -> VendorRequest:
        system, turns = request.split_system()
        messages = [
            {"role": message.role, "content": self._content_blocks(message)}
            for message in turns
        ]
        stream = bool(request.stream)
        body = self.compact({
            "model": request.model,
            "max_tokens": request.max_tokens or self.default_max_tokens,
            "system": system or None,
            "messages": messages,
            "stream": stream,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "stop_sequences": request.stop_sequences(),
        })
        return VendorRequest(body=body, model=request.model, stream=stream)

    # ------------------------------------------------------------------
    # Anthropic -> canonical
    # ------------------------------------------------------------------

    def from_vendor(self, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            return self.empty_response()

        content = self.parser.flatten_content(payload.get("content"))
        usage_block = payload.get("usage")
        usage = TokenUsage(
            input_tokens=self.parser.read_tokens(usage_block, "input_tokens"),
            output_tokens=self.parser.read_tokens(usage_block, "output_tokens"),
        )
        return self.chunk.build_response(
            payload.get("id") or generate_id(),
            payload.get("model") or "",
            [self.chunk.build_choice(0, content, self.map_finish_reason(payload.get("stop_reason")))],
            usage.to_openai(),
        )

    def reencode_event(self, event: Dict[str, Any], state: StreamState) -> List[Dict[str, Any]]:
        event_type = event.get("type")

        if event_type == "message_start":
            message = self.parser.as_dict(event.get("message"))
            if message.get("id"):
                state.response_id = message["id"]
            state.record_usage(input_tokens=self.parser.read_tokens(message.get("usage"), "input_tokens"))
            return [self.chunk.build_role_chunk(state)]

        if event_type == "content_block_delta":
            delta = self.parser.as_dict(event.get("delta"))
            text = delta.get("text")
            if delta.get("type") != "text_delta" or not isinstance(text, str) or not text:
                return []
            state.output_units += text_units(text)
            return [self.chunk.build_content_chunk(state, text)]

        if event_type == "message_delta":
            usage_block = event.get("usage")
            state.record_usage(
                self.parser.read_tokens(usage_block, "input_tokens"),
                self.parser.read_tokens(usage_block, "output_tokens"),
            )
            stop_reason = self.parser.as_dict(event.get("delta")).get("stop_reason")
            if not stop_reason:
                return []
            state.finish_reason = self.map_finish_reason(stop_reason)
            return [self.chunk.build_finish_chunk(state, state.finish_reason)]

        if event_type == "message_stop":
            state.done = True
            return []

        if event_type == "error":
            error = self.parser.as_dict(event.get("error"))
            return [self.chunk.build_error_chunk(error.get("message") or "upstream stream error")]

        # ping / content_block_start / content_block_stop
        return []

    # ------------------------------------------------------------------
    # 入站 Anthropic 请求 -> canonical
    # ------------------------------------------------------------------

    def _canonical_parts(self, blocks: List[Any]) -> List[Dict[str, Any]]:
        parts = []
        for block in blocks:
            if isinstance(block, str):
                parts.append({"type": "text", "text": block})
                continue
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                parts.append({"type": "text", "text": block.get("text") or ""})
            elif block.get("type") == "image":
                source = self.parser.as_dict(block.get("source"))
                if source.get("type") == "base64":
                    url = f"data:{source.get('media_type')};base64,{source.get('data')}"
                else:
                    url = source.get("url")
                if url:
                    parts.append({"type": "image_url", "image_url": {"url": url}})
        return parts

    def to_canonical(self, body: Dict[str, Any]) -> Dict[str, Any]:
        messages = []
        system: Optional[Any] = body.get("system")
        if system:
            messages.append({"role": "system", "content": self.parser.flatten_content(system)})

        for message in self.parser.as_list(body.get("messages")):
            if not isinstance(message, dict):
                continue
            role = "assistant" if message.get("role") == "assistant" else "user"
            content = message.get("content")
            if isinstance(content, list):
                content = self._canonical_parts(content)
            messages.append({"role": role, "content": content})

        return self.compact({
            "model": body.get("model"),
            "messages": messages,
            "stream": bool(body.get("stream", False)),
            "max_tokens": body.get("max_tokens"),
            "temperature": body.get("temperature"),
            "top_p": body.get("top_p"),
            "stop": body.get("stop_sequences"),
        })
