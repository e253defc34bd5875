import base64
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import aiofiles
import structlog

from casegen.config.settings import settings
from casegen.core.exceptions import ImageProcessingError
from casegen.core.prompts import system_prompt_for
from casegen.models.schemas import GenerationMode, GenerationPayload, ImageDescriptor

logger = structlog.get_logger()

_EXTENSION_MIME_TYPES = {
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def _mime_type_for(image: ImageDescriptor) -> str:
    if image.mime_type and image.mime_type.startswith("image/"):
        return "image/jpeg" if image.mime_type == "image/jpg" else image.mime_type
    return _EXTENSION_MIME_TYPES.get(Path(image.storage_path).suffix.lower(), "image/jpeg")


async def encode_image(image: ImageDescriptor) -> str:
    """Read a stored image and return it as a base64 data URL."""
    try:
        async with aiofiles.open(image.storage_path, "rb") as f:
            data = await f.read()
    except OSError as e:
        raise ImageProcessingError(f"Cannot read image {image.original_name}: {e}") from e
    if not data:
        raise ImageProcessingError(f"Image {image.original_name} is empty")
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{_mime_type_for(image)};base64,{encoded}"


class RequestBuilder:
    """Assemble chat completion payloads from issue text and images.

    Only reads image files; never talks to the network.
    """

    def __init__(
        self,
        text_model: Optional[str] = None,
        vision_model: Optional[str] = None,
        max_completion_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self.text_model = text_model or settings.openai_model
        self.vision_model = vision_model or settings.openai_vision_model
        self.max_completion_tokens = max_completion_tokens or settings.openai_max_completion_tokens
        self.temperature = settings.openai_temperature if temperature is None else temperature

    async def build_request(
        self,
        issue_key: str,
        context: str,
        mode: GenerationMode = GenerationMode.MANUAL,
        images: Sequence[ImageDescriptor] = (),
    ) -> GenerationPayload:
        mode = GenerationMode(mode)
        image_parts: List[Dict[str, Any]] = []
        for image in images:
            try:
                data_url = await encode_image(image)
            except ImageProcessingError as e:
                # One unreadable image must not sink the whole request
                logger.warning("Skipping image that could not be encoded",
                               issue_key=issue_key, image=image.original_name, error=str(e))
                continue
            image_parts.append({
                "type": "image_url",
                "image_url": {"url": data_url, "detail": "high"},
            })
            logger.info("Added image to OpenAI request", issue_key=issue_key, image=image.original_name)

        issue_text = f"\n\nJIRA issue: {issue_key} \n\n{context}"
        user_content: Union[str, List[Dict[str, Any]]]
        if image_parts:
            issue_text += f"\n\nImages provided: {len(image_parts)} image(s) for analysis."
            user_content = [{"type": "text", "text": issue_text}] + image_parts
            model = self.vision_model
        else:
            user_content = issue_text
            model = self.text_model

        messages = [
            {"role": "system", "content": system_prompt_for(mode)},
            {"role": "user", "content": user_content},
        ]
        logger.info("Built generation request", issue_key=issue_key, model=model,
                    mode=mode.value, images=len(image_parts), images_dropped=len(images) - len(image_parts))
        return GenerationPayload(
            model=model,
            messages=messages,
            max_completion_tokens=self.max_completion_tokens,
            temperature=self.temperature,
            image_count=len(image_parts),
        )
