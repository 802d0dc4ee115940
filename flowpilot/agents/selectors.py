"""
CSS selectors for the target pages.

Each selector is a comma-separated group of fallbacks, most specific first.
Target sites change their markup often; adjust here, not in the agents.
"""

from dataclasses import dataclass

# Host and path that mark a finished, signed video URL on the production site
SIGNED_VIDEO_HOST = "storage.googleapis.com"
SIGNED_VIDEO_PATH = "/ai-sandbox-videofx/video/"


@dataclass(frozen=True)
class FlowSelectors:
    prompt_input: str = (
        'textarea[aria-label*="prompt" i], textarea[placeholder*="prompt" i], '
        'textarea[placeholder*="video" i], textarea'
    )
    duration_selector: str = (
        'select[name*="duration"], [aria-label*="Duration"] select, [data-testid*="duration"] select'
    )
    aspect_ratio_selector: str = (
        'select[name*="aspect"], [aria-label*="Aspect"] select, [data-testid*="aspect"] select'
    )
    style_selector: str = 'select[name*="style"], [aria-label*="Style"] select'
    music_toggle: str = (
        'input[type="checkbox"][name*="music"], [aria-label*="Music"] input[type="checkbox"], '
        'button[aria-label*="Music"]'
    )
    voiceover_toggle: str = (
        'input[type="checkbox"][name*="voice"], [aria-label*="Voice"] input[type="checkbox"], '
        'button[aria-label*="Voice"]'
    )
    generate_button: str = (
        'button[aria-label*="generate" i], button[aria-label*="create" i], button[type="submit"]'
    )
    progress_indicator: str = '.progress-indicator, [role="progressbar"], .progress'
    progress_text: str = '[aria-live="polite"], .progress-text, .status-text'
    video: str = 'video[src*="ai-sandbox-videofx/video"], video'
    video_source: str = 'video source[src*="ai-sandbox-videofx/video"], video source'
    download_link: str = (
        'a[href*="storage.googleapis.com/ai-sandbox-videofx/video"], a[download], a[href*="download" i]'
    )
    data_url: str = '[data-url*="storage.googleapis.com/ai-sandbox-videofx/video"]'
    error_message: str = '[role="alert"], .error, .toast-error'
    cancel_button: str = (
        'button[aria-label*="cancel" i], button[aria-label*="stop" i]'
    )


@dataclass(frozen=True)
class TikTokSelectors:
    upload_area: str = '[data-e2e*="upload"], .upload-container, main'
    file_input: str = 'input[type="file"][accept*="video"]'
    upload_complete: str = '[data-e2e*="success"], .upload-success, .success'
    caption_input: str = 'textarea[placeholder*="caption"], div[contenteditable="true"]'
    post_button: str = (
        'button[data-e2e="post-button"], button[type="submit"], [role="button"][data-e2e="post-button"]'
    )
    success_message: str = '[data-e2e*="success"], .toast-success, .success'
    error_message: str = '[role="alert"], .toast-error, .error'


@dataclass(frozen=True)
class SellerCenterSelectors:
    """Product video upload on marketplace seller centers."""

    product_edit_button: str
    video_upload_area: str
    file_input: str
    save_button: str
    success_message: str = '.toast-success, [class*="success"], [role="status"]'
    error_message: str = '[role="alert"], .toast-error, .error'


SHOPEE_SELECTORS = SellerCenterSelectors(
    product_edit_button='button[type="button"], button',
    video_upload_area='.product-video-upload, input[type="file"][accept*="video"]',
    file_input='input[type="file"][accept*="video"]',
    save_button='button[type="submit"], button',
)

LAZADA_SELECTORS = SellerCenterSelectors(
    product_edit_button='button:has-text("Edit"), a[href*="product/edit"]',
    video_upload_area='.video-upload-zone, input[type="file"][accept*="video"]',
    file_input='input[type="file"][accept*="video"]',
    save_button='button:has-text("Submit"), button:has-text("Save")',
)
