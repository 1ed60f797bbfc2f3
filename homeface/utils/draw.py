from __future__ import annotations

import warnings

from functools import lru_cache
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from homeface.config import FONT_LIST

_WARNED_NO_CJK_FONT = False

MATCH_COLOR = (0, 200, 0)
FACE_COLOR = (0, 200, 255)
STATUS_COLOR = (255, 255, 255)

TextItem = Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]


@lru_cache(maxsize=32)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """Return the first loadable font in FONT_LIST (cached per size)."""
    global _WARNED_NO_CJK_FONT
    for p in FONT_LIST:
        try:
            return ImageFont.truetype(p, int(font_size))
        except OSError:
            continue
    if not _WARNED_NO_CJK_FONT:
        _WARNED_NO_CJK_FONT = True
        warnings.warn(
            "未找到可用的中文字体文件（FONT_LIST 全部加载失败），中文可能显示为方块。"
            "Linux 可安装 fonts-noto-cjk 或 fonts-wqy-zenhei。",
            RuntimeWarning,
        )
    return ImageFont.load_default()


def draw_texts_cn(img: np.ndarray, items: Sequence[TextItem]) -> None:
    """Draw unicode texts onto a BGR frame in place, with a single PIL conversion.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y), font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
    draw = ImageDraw.Draw(pil_img)
    for text, org, font_size, bgr in items:
        # PIL uses RGB
        rgb_color = (int(bgr[2]), int(bgr[1]), int(bgr[0]))
        draw.text(tuple(org), str(text), font=_get_best_font(int(font_size)), fill=rgb_color)
    img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)


def draw_frame_overlay(
    frame: np.ndarray,
    result,
    status: Optional[str] = None,
    font_size: int = 18,
) -> np.ndarray:
    """在画面上绘制人脸框、识别结果和状态提示（原地修改并返回 frame）。

    `result` 为 FramePipeline.process_frame 的返回值；匹配结果标注在置信度最高的人脸上。
    """
    h, w = frame.shape[:2]
    texts = []
    detections = sorted(result.detections, key=lambda d: float(d.confidence), reverse=True)
    for i, det in enumerate(detections):
        x1, y1, x2, y2 = det.bbox.to_pixels(w, h)
        matched = i == 0 and result.match is not None
        color = MATCH_COLOR if matched else FACE_COLOR
        cv2.rectangle(frame, (x1, y1), (x2, y2), color, 2)
        label = f"{result.match.name} {result.match.score:.2f}" if matched else f"{det.confidence:.2f}"
        texts.append((label, (x1, max(0, y1 - font_size - 4)), font_size, color))

    line = f"[{result.mode.value}] {status}" if status else f"[{result.mode.value}]"
    texts.append((line, (8, 8), font_size, STATUS_COLOR))
    draw_texts_cn(frame, texts)
    return frame
