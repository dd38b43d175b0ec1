SYSTEM_PROMPT = """You are an expert screenwriter and film director turning prose into a visual storyboard.
Output ONLY valid JSON matching the provided schema."""


CHARACTERS_SCHEMA = r"""{
  "characters": [
    {
      "name": "<character name exactly as written in the text>",
      "description": "<very detailed visual description for an image model: hair, eyes, clothing, age>"
    }
  ]
}"""


CHARACTERS_PROMPT_TEMPLATE = """Identify the main characters (at most 5) in the text below.
Write a VERY detailed visual description of each one so an image model can draw them consistently.

Schema:
{schema}

Text:
{text}

Return ONLY valid JSON for the schema above."""


STORYBOARD_SCHEMA = r"""{
  "scenes": [
    {
      "parts": [
        {
          "type": "NARRATION | DIALOGUE | INSTRUCTION",
          "speaker": "<character name, only for DIALOGUE>",
          "text": "<the part text>"
        }
      ]
    }
  ]
}"""


STORYBOARD_PROMPT_TEMPLATE = """Transform the following novel text into a structured storyboard.

Split the text into logical visual scenes. For each scene produce an ordered array of "parts":
- "NARRATION": cinematic descriptive text.
- "DIALOGUE": literal character dialogue, with the speaking character in "speaker".
- "INSTRUCTION": camera directions (e.g. "Extreme wide shot"), lighting or mood.

Schema:
{schema}

Text:
{text}

Return ONLY valid JSON for the schema above."""


IMAGE_PROMPT_TEMPLATE = """TASK: Act as an Art Director for a consistent visual series.
Create a highly detailed image generation prompt for one scene while keeping a strictly UNIFORM STYLE across all frames.

GLOBAL PROJECT STYLE: "{style_upper}"
ARTISTIC DIRECTION & PALETTE: "{art_direction}"

MANDATORY STYLE ANCHORS:
1. The prompt MUST start with: "A high-quality masterpiece in {style} style, part of a consistent narrative series, with {art_direction} lighting and colors."
2. Characters MUST match these descriptions exactly:
{characters}
3. Lighting, texture and overall artistic vibe must match the GLOBAL PROJECT STYLE exactly.

SCENE DESCRIPTION:
{scene}

TECHNICAL CONSTRAINTS:
- Language: English.
- Details: professional cinematic composition, 8k, detailed textures.
- Atmosphere: consistent with "{art_direction}".
- {text_rule}

Return JSON of the form {{"prompt": "<the image prompt>"}}."""

TEXT_IN_IMAGE_RULE = "Reserve space for subtitles if dialogue is present."
NO_TEXT_RULE = "NO TEXT, NO LOGOS, NO WATERMARKS."


VIDEO_PROMPT_TEMPLATE = (
    "Cinematic high-quality animation: {action}. Maintain strictly consistent character design "
    "and lighting. Fluid professional motion, filmic look."
)
