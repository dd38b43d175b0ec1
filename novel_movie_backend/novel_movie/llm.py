import os, json, logging
from typing import List

from .errors import GenerationError
from .models import Character, NarrationPart, PartKind, SceneSpec, StyleConfig
from .prompts import (
    SYSTEM_PROMPT, CHARACTERS_SCHEMA, CHARACTERS_PROMPT_TEMPLATE, STORYBOARD_SCHEMA,
    STORYBOARD_PROMPT_TEMPLATE, IMAGE_PROMPT_TEMPLATE, TEXT_IN_IMAGE_RULE, NO_TEXT_RULE,
)
from .settings import OPENAI_MODEL

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        api_key = os.getenv("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is not set; please configure your .env")
        _client = AsyncOpenAI(api_key=api_key)
    return _client

async def _complete_json(user_prompt: str, temperature: float = 0.4) -> dict:
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]
    client = _get_client()
    resp = await client.chat.completions.create(
        model=OPENAI_MODEL,
        messages=messages,
        temperature=temperature,
        response_format={"type": "json_object"},
    )
    content = resp.choices[0].message.content
    logger.info("Successfully received response from OpenAI")
    return json.loads(content)

def parse_characters(raw: dict) -> List[Character]:
    characters = []
    seen = set()
    for item in raw.get("characters") or []:
        name = (item.get("name") or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        characters.append(Character(name=name, description=item.get("description") or ""))
    return characters

def parse_scene_specs(raw: dict) -> List[SceneSpec]:
    specs = []
    for scene in raw.get("scenes") or []:
        parts = []
        for part in scene.get("parts") or []:
            kind = str(part.get("type") or part.get("kind") or "NARRATION").upper()
            if kind not in PartKind.__members__:
                kind = PartKind.NARRATION.value
            parts.append(NarrationPart(
                kind=PartKind(kind),
                speaker=part.get("speaker") or None,
                text=part.get("text") or "",
            ))
        if parts:
            specs.append(SceneSpec(parts=parts))
    return specs

def build_image_prompt_request(parts: List[NarrationPart], style: StyleConfig, characters: List[Character]) -> str:
    return IMAGE_PROMPT_TEMPLATE.format(
        style=style.image_style,
        style_upper=style.image_style.upper(),
        art_direction=style.art_direction,
        characters="\n".join(f"{c.name}: {c.description}" for c in characters),
        scene=" ".join(p.text for p in parts),
        text_rule=TEXT_IN_IMAGE_RULE if style.include_text_in_image else NO_TEXT_RULE,
    )

async def identify_characters(text: str) -> List[Character]:
    logger.info("Calling OpenAI API to identify characters")
    try:
        raw = await _complete_json(CHARACTERS_PROMPT_TEMPLATE.format(schema=CHARACTERS_SCHEMA, text=text))
        return parse_characters(raw)
    except Exception as e:
        logger.error(f"OpenAI character analysis failed: {str(e)}")
        raise GenerationError("Could not identify the characters of the story.") from e

async def parse_storyboard(text: str) -> List[SceneSpec]:
    logger.info("Calling OpenAI API to build the storyboard")
    try:
        raw = await _complete_json(STORYBOARD_PROMPT_TEMPLATE.format(schema=STORYBOARD_SCHEMA, text=text))
    except Exception as e:
        logger.error(f"OpenAI storyboard call failed: {str(e)}")
        raise GenerationError("Could not structure the script into scenes.") from e
    specs = parse_scene_specs(raw)
    if not specs:
        raise GenerationError("The storyboard came back without any scenes.")
    logger.info(f"Storyboard generated with {len(specs)} scenes")
    return specs

async def compose_image_prompt(parts: List[NarrationPart], style: StyleConfig, characters: List[Character]) -> str:
    try:
        raw = await _complete_json(build_image_prompt_request(parts, style, characters), temperature=0.7)
    except Exception as e:
        logger.error(f"OpenAI image prompt call failed: {str(e)}")
        raise GenerationError("Could not compose the image prompt.") from e
    prompt = (raw.get("prompt") or "").strip()
    if not prompt:
        raise GenerationError("The image prompt came back empty.")
    return prompt
