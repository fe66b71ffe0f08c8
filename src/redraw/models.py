"""Types and models for the redraw project."""

import math
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TASK_STATES = Literal["pending", "processing", "completed", "failed"]
ASPECT_RATIOS = Literal["16:9", "4:3", "9:16", "3:4", "1:1"]
ORIENTATIONS = Literal["LANDSCAPE", "PORTRAIT", "SQUARE"]


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class RatioSpec(BaseModel):
    """Target canvas for one aspect ratio"""

    width: int
    height: int
    orientation: ORIENTATIONS
    description: str

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height} pixels ({self.orientation})"


RATIO_SPECS: Dict[str, RatioSpec] = {
    "16:9": RatioSpec(
        width=1920, height=1080, orientation="LANDSCAPE", description="wider than tall"
    ),
    "4:3": RatioSpec(
        width=1440, height=1080, orientation="LANDSCAPE", description="wider than tall"
    ),
    "9:16": RatioSpec(
        width=1080, height=1920, orientation="PORTRAIT", description="taller than wide"
    ),
    "3:4": RatioSpec(
        width=1080, height=1440, orientation="PORTRAIT", description="taller than wide"
    ),
    "1:1": RatioSpec(
        width=1080,
        height=1080,
        orientation="SQUARE",
        description="equal width and height",
    ),
}


class FixedElements(CamelModel):
    header: Optional[str] = None
    footer: Optional[str] = None


class StyleProfile(CamelModel):
    """Visual style extracted from reference material"""

    colors: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    tonality: Optional[str] = None
    fixed_elements: Optional[FixedElements] = None
    content_types: List[str] = Field(default_factory=list)
    layout_style: Optional[str] = None


class BrandInfo(CamelModel):
    """Brand configuration passed through unchanged to the design generator"""

    name: Optional[str] = None
    tonality: str = "Professional, Modern, Premium"
    color_palette: List[str] = Field(default_factory=lambda: ["#FFFFFF", "#000000"])
    style_keywords: Optional[List[str]] = None
    style_profile: Optional[StyleProfile] = None
    is_custom_style: bool = False
    logo_base64: Optional[str] = None


DEFAULT_BRAND = BrandInfo(
    tonality="Professional, modern, high-end",
    color_palette=["#1a1a2e", "#16213e", "#0f3460", "#e94560"],
)


class PageInput(CamelModel):
    """One page of an uploaded document"""

    page_number: int = Field(ge=1)
    image_base64: str
    text_content: str = ""


def compute_progress(completed: int, total: int) -> int:
    """Percentage of pages with a result, rounded half up"""
    if total <= 0:
        return 0
    return int(math.floor(100 * completed / total + 0.5))


class TaskSummary(CamelModel):
    """Lightweight status view of a task, without page payloads"""

    id: str
    status: TASK_STATES
    created_at: datetime
    updated_at: datetime
    progress: int
    current_page: int = 0
    total_pages: int
    file_name: str
    brand_name: str = "Unknown"
    aspect_ratio: ASPECT_RATIOS = "16:9"
    completed_count: int = 0
    processing_pages: List[int] = Field(default_factory=list)
    failed_pages: List[int] = Field(default_factory=list)
    status_message: Optional[str] = None
    error: Optional[str] = None


class TaskRecord(CamelModel):
    """Durable record of one redraw job"""

    id: str
    status: TASK_STATES = "pending"
    created_at: datetime
    updated_at: datetime
    total_pages: int
    file_name: str = "untitled.pdf"
    pages: List[PageInput]
    brand_info: BrandInfo
    aspect_ratio: ASPECT_RATIOS = "16:9"
    results: Dict[int, str] = Field(default_factory=dict)
    processing_pages: List[int] = Field(default_factory=list)
    failed_pages: List[int] = Field(default_factory=list)
    current_page: int = 0
    progress: int = 0
    status_message: Optional[str] = None
    error: Optional[str] = None

    def pending_pages(self) -> List[PageInput]:
        """Pages that do not have a result yet, in original order"""
        return [page for page in self.pages if page.page_number not in self.results]

    def summary(self) -> TaskSummary:
        return TaskSummary(
            id=self.id,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            progress=self.progress,
            current_page=self.current_page,
            total_pages=self.total_pages,
            file_name=self.file_name,
            brand_name=self.brand_info.name or "Unknown",
            aspect_ratio=self.aspect_ratio,
            completed_count=len(self.results),
            processing_pages=list(self.processing_pages),
            failed_pages=list(self.failed_pages),
            status_message=self.status_message,
            error=self.error,
        )


class DesignRequest(CamelModel):
    """Inputs for generating one redesigned page"""

    image_data: str
    text_content: str = ""
    brand_info: BrandInfo = Field(default_factory=BrandInfo)
    page_number: Optional[int] = None
    aspect_ratio: ASPECT_RATIOS = "16:9"
    extra_instructions: Optional[str] = None


# API payloads


class CreateTaskRequest(CamelModel):
    pages: Optional[List[PageInput]] = None
    brand_info: Optional[BrandInfo] = None
    aspect_ratio: Optional[ASPECT_RATIOS] = None
    file_name: Optional[str] = None


class ProcessTaskRequest(CamelModel):
    task_id: Optional[str] = None


class StopTaskRequest(CamelModel):
    task_id: str


class RedoPageRequest(CamelModel):
    task_id: str
    page_number: int
    additional_instructions: Optional[str] = None


class GenerateImageRequest(CamelModel):
    page_image: Optional[str] = None
    page_content: Optional[str] = None
    brand_info: Optional[BrandInfo] = None
    page_number: Optional[int] = None
    aspect_ratio: ASPECT_RATIOS = "16:9"
    additional_instructions: Optional[str] = None


class StyleFile(CamelModel):
    data: str
    type: str = "image/png"


class AnalyzeStyleRequest(CamelModel):
    files: List[StyleFile] = Field(default_factory=list)
