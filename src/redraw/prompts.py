"""Prompt text sent to the design and analysis models"""

import json

from .models import DesignRequest, RATIO_SPECS

DESIGN_PROMPT = """\
You are an editorial art director.
FUSE the input image with magazine-quality design. Do NOT replace its content.

### ASPECT RATIO & LAYOUT
- TARGET OUTPUT: {resolution} (STRICT)
- Adapt the layout to the target ratio while preserving the content hierarchy.
- Do not crop out important content.

### DESIGN STANDARDS
1. Retain all text, data visualizations and key graphics from the input.
2. Enhance typography, layout and colors; add contextual imagery.
3. Text must match the input exactly. Do not invent or modify text.

### BRAND
- Tonality: {tonality}
- Color palette: {colors}
{keywords}
### INPUT
- Original image: primary reference, preserve its content.
- Text content: "{content}"

### OUTPUT
A single flattened image at {resolution}.
"""

ANALYSIS_PROMPT = (
    "Describe everything on this presentation page in detail: title, body text, "
    "chart data and image descriptions."
)

STYLE_PROMPT = """\
Analyze the design reference images and extract:
- colors: 4-6 main HEX colors, most important first
- keywords: 3-5 style keywords
- tonality: 2-3 sentences about the overall style
- fixedElements: {"header": ..., "footer": ...} or null values
- contentTypes: page types shown (cover, contents, content, chart, ending)
- layoutStyle: the layout pattern

Return only valid JSON:
{"colors": [], "keywords": [], "tonality": "", "fixedElements": {"header": null, "footer": null}, "contentTypes": [], "layoutStyle": ""}
"""


def output_header(aspect_ratio: str) -> str:
    """Mandatory size block placed ahead of every design prompt"""
    spec = RATIO_SPECS[aspect_ratio]
    return "\n".join(
        [
            "#" * 69,
            "# MANDATORY OUTPUT SPECIFICATION",
            "#" * 69,
            f"OUTPUT: {spec.width}x{spec.height} pixels ({spec.orientation})",
            f"ASPECT RATIO: {aspect_ratio}",
            "",
            f"OUTPUT MUST BE {spec.width} pixels wide and {spec.height} pixels tall.",
            f"OUTPUT MUST BE {spec.orientation} orientation ({spec.description}).",
            "IGNORE the input image dimensions; it is only a content reference.",
            f"Redesign the content to fit the {aspect_ratio} format.",
            "#" * 69,
        ]
    )


def build_design_prompt(request: DesignRequest) -> str:
    spec = RATIO_SPECS[request.aspect_ratio]
    brand = request.brand_info
    keywords = ""
    if brand.style_keywords:
        keywords = f"- Style keywords: {', '.join(brand.style_keywords)}\n"
    prompt = (
        output_header(request.aspect_ratio)
        + "\n\n"
        + DESIGN_PROMPT.format(
            resolution=spec.resolution,
            tonality=brand.tonality or "Professional, Modern, Premium",
            colors=json.dumps(brand.color_palette or ["#FFFFFF", "#000000"]),
            keywords=keywords,
            content=request.text_content or "(Extract from image)",
        )
    )

    if brand.is_custom_style and brand.style_profile:
        profile = brand.style_profile
        fixed = profile.fixed_elements
        prompt += (
            "\n### CUSTOM STYLE REFERENCE (MUST FOLLOW EXACTLY)\n"
            f"- Layout style: {profile.layout_style or 'Modern'}\n"
            f"- Fixed header: {(fixed and fixed.header) or 'None'}\n"
            f"- Fixed footer: {(fixed and fixed.footer) or 'None'}\n"
            f"- Design keywords: {', '.join(profile.keywords) or 'Professional'}\n"
            f"- Color palette: {', '.join(profile.colors) or 'Monochrome'}\n"
            "Replicate any header/footer pattern and keep the same palette.\n"
        )

    if request.extra_instructions and request.extra_instructions.strip():
        prompt += (
            "\n### ADDITIONAL INSTRUCTIONS (MUST FOLLOW)\n"
            f"{request.extra_instructions.strip()}\n"
        )

    return prompt
