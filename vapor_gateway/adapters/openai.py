"""
OpenAI 格式适配器

canonical 格式本身即 OpenAI chat-completions 形态，因此出站基本透传：
合并 system 消息为开头的一条内联 system 消息，stop 统一为数组。
"""

from typing import Any, Dict, List

from ..helpers import generate_id
from ..schemas import ChannelConfig, ChatCompletionRequest, TokenUsage, VendorType
from ..token_estimator import text_units
from .base import StreamState, VendorAdapter, VendorRequest


class OpenAIAdapter(VendorAdapter):
    vendor = VendorType.OPENAI
    finish_reasons = {
        "stop": "stop",
        "length": "length",
        "content_filter": "content_filter",
    }

    def to_vendor(self, request: ChatCompletionRequest, channel: ChannelConfig) -> VendorRequest:
        system, turns = request.split_system()
        body = request.model_dump(exclude_none=True)

        messages = []
        if system is not None:
            messages.append({"role": "system", "content": system})
        messages.extend(message.model_dump(exclude_none=True) for message in turns)
        body["messages"] = messages

        stop = request.stop_sequences()
        if stop is not None:
            body["stop"] = stop

        stream = bool(request.stream)
        body["stream"] = stream
        if stream:
            # 请求上游在流末尾附带 usage
            body.setdefault("stream_options", {"include_usage": True})

        return VendorRequest(body=body, model=request.model, stream=stream)

    def from_vendor(self, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            return self.empty_response()

        choices = []
        for index, choice in enumerate(self.parser.as_list(payload.get("choices"))):
            if not isinstance(choice, dict):
                continue
            message = choice.get("message")
            content = self.parser.flatten_content(message.get("content") if isinstance(message, dict) else None)
            choices.append(self.chunk.build_choice(
                choice.get("index", index),
                content,
                self.map_finish_reason(choice.get("finish_reason")),
            ))
        if not choices:
            choices.append(self.chunk.build_choice(0, "", None))

        usage_block = payload.get("usage")
        usage = TokenUsage(
            input_tokens=self.parser.read_tokens(usage_block, "prompt_tokens"),
            output_tokens=self.parser.read_tokens(usage_block, "completion_tokens"),
        )
        return self.chunk.build_response(
            payload.get("id") or generate_id(),
            payload.get("model") or "",
            choices,
            usage.to_openai(),
        )

    def reencode_event(self, event: Dict[str, Any], state: StreamState) -> List[Dict[str, Any]]:
        usage_block = event.get("usage")
        if isinstance(usage_block, dict):
            state.record_usage(
                self.parser.read_tokens(usage_block, "prompt_tokens"),
                self.parser.read_tokens(usage_block, "completion_tokens"),
            )

        for choice in self.parser.as_list(event.get("choices")):
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta")
            if isinstance(delta, dict) and isinstance(delta.get("content"), str):
                state.output_units += text_units(delta["content"])
            if choice.get("finish_reason"):
                state.finish_reason = self.map_finish_reason(choice["finish_reason"])

        forwarded = dict(event)
        forwarded["model"] = state.model
        return [forwarded]

    def to_canonical(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return dict(body)
