"""
Google Gemini (Generative Language API) 适配器

上游模型名不在请求体中，由客户端拼进 URL 路径。
"""

from typing import Any, Dict, List

from ..helpers import generate_id
from ..schemas import ChannelConfig, ChatCompletionRequest, Message, TokenUsage, VendorType
from ..token_estimator import text_units
from .base import StreamState, VendorAdapter, VendorRequest


class GeminiAdapter(VendorAdapter):
    vendor = VendorType.GEMINI
    finish_reasons = {
        "stop": "stop",
        "max_tokens": "length",
        "safety": "content_filter",
        "recitation": "content_filter",
        "blocklist": "content_filter",
        "prohibited_content": "content_filter",
        "spii": "content_filter",
    }

    def _parts(self, message: Message) -> List[Dict[str, Any]]:
        if message.content is None or isinstance(message.content, str):
            return [{"text": message.content or ""}]

        parts = []
        for part in message.content:
            if part.type == "text":
                parts.append({"text": part.text or ""})
            elif part.type == "image_url" and part.image_url:
                data_url = self.parser.parse_data_url(part.image_url.url)
                if data_url:
                    mime_type, data = data_url
                    parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
                else:
                    parts.append({"fileData": {"mimeType": "image/*", "fileUri": part.image_url.url}})
        return parts

    def to_vendor(self, request: ChatCompletionRequest, channel: ChannelConfig) -> VendorRequest:
        system, turns = request.split_system()
        contents = [
            {
                "role": "model" if message.role == "assistant" else "user",
                "parts": self._parts(message),
            }
            for message in turns
        ]
        generation_config = self.compact({
            "maxOutputTokens": request.max_tokens,
            "temperature": request.temperature,
            "topP": request.top_p,
            "stopSequences": request.stop_sequences(),
        })
        body = self.compact({
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system}]} if system else None,
            "generationConfig": generation_config or None,
        })
        return VendorRequest(body=body, model=request.model, stream=bool(request.stream))

    def _usage(self, payload: Dict[str, Any]) -> TokenUsage:
        usage_block = payload.get("usageMetadata")
        return TokenUsage(
            input_tokens=self.parser.read_tokens(usage_block, "promptTokenCount"),
            output_tokens=self.parser.read_tokens(usage_block, "candidatesTokenCount"),
        )

    def _candidate_text(self, candidate: Dict[str, Any]) -> str:
        content = candidate.get("content")
        if not isinstance(content, dict):
            return ""
        return self.parser.flatten_content(content.get("parts"))

    def from_vendor(self, payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            return self.empty_response()

        choices = []
        for index, candidate in enumerate(self.parser.as_list(payload.get("candidates"))):
            if not isinstance(candidate, dict):
                continue
            choices.append(self.chunk.build_choice(
                candidate.get("index", index),
                self._candidate_text(candidate),
                self.map_finish_reason(candidate.get("finishReason")),
            ))
        if not choices:
            # 提示词被拦截时没有 candidates
            block_reason = self.parser.as_dict(payload.get("promptFeedback")).get("blockReason")
            choices.append(self.chunk.build_choice(0, "", "content_filter" if block_reason else None))

        return self.chunk.build_response(
            payload.get("responseId") or generate_id("gemini-"),
            payload.get("modelVersion") or "",
            choices,
            self._usage(payload).to_openai(),
        )

    def reencode_event(self, event: Dict[str, Any], state: StreamState) -> List[Dict[str, Any]]:
        chunks = []
        candidate = self.parser.first_dict(event.get("candidates"))

        text = self._candidate_text(candidate)
        if text:
            state.output_units += text_units(text)
            chunks.append(self.chunk.build_content_chunk(state, text))

        finish_reason = candidate.get("finishReason")
        if finish_reason:
            state.finish_reason = self.map_finish_reason(finish_reason)
            chunks.append(self.chunk.build_finish_chunk(state, state.finish_reason))

        if isinstance(event.get("usageMetadata"), dict):
            usage = self._usage(event)
            state.record_usage(usage.input_tokens, usage.output_tokens)

        return chunks

    def to_canonical(self, body: Dict[str, Any]) -> Dict[str, Any]:
        messages = []
        instruction = body.get("systemInstruction") or body.get("system_instruction")
        if isinstance(instruction, dict):
            system = self.parser.flatten_content(instruction.get("parts"))
        else:
            system = self.parser.flatten_content(instruction)
        if system:
            messages.append({"role": "system", "content": system})

        for content in self.parser.as_list(body.get("contents")):
            if not isinstance(content, dict):
                continue
            parts = []
            for part in self.parser.as_list(content.get("parts")):
                if not isinstance(part, dict):
                    continue
                if isinstance(part.get("text"), str):
                    parts.append({"type": "text", "text": part["text"]})
                elif isinstance(part.get("inlineData"), dict):
                    inline = part["inlineData"]
                    url = f"data:{inline.get('mimeType')};base64,{inline.get('data')}"
                    parts.append({"type": "image_url", "image_url": {"url": url}})
                elif isinstance(part.get("fileData"), dict) and part["fileData"].get("fileUri"):
                    parts.append({"type": "image_url", "image_url": {"url": part["fileData"]["fileUri"]}})

            if all(part["type"] == "text" for part in parts):
                message_content: Any = "".join(part["text"] for part in parts)
            else:
                message_content = parts
            messages.append({
                "role": "assistant" if content.get("role") == "model" else "user",
                "content": message_content,
            })

        config = self.parser.as_dict(body.get("generationConfig"))
        return self.compact({
            "model": body.get("model"),
            "messages": messages,
            "stream": bool(body.get("stream", False)),
            "max_tokens": config.get("maxOutputTokens"),
            "temperature": config.get("temperature"),
            "top_p": config.get("topP"),
            "stop": config.get("stopSequences"),
        })
