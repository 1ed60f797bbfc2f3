"""InsightFace 适配层：把检测器 / 特征提取器包装成引擎需要的两个函数。

- detect(frame) -> [Detection]   相对坐标的中心框 + 置信度
- embed(face)   -> EmbeddingVector   输入为 160x160x3、[0,1] 的 RGB 人脸图

匹配、阈值、冷却都不在这里处理。
"""

from __future__ import annotations

import io

from contextlib import redirect_stderr, redirect_stdout
from typing import Dict, List, Optional, Tuple

import numpy as np
import torch

from insightface.app import FaceAnalysis

from homeface.config import DETECTOR_MIN_CONFIDENCE
from homeface.face.preprocess import to_uint8_bgr
from homeface.face.types import BoundingBox, Detection
from homeface.utils.log import get_logger, suppress_fds
from homeface.utils.math import as_embedding, l2_normalize

logger = get_logger(__name__)

# 进程内模型缓存：同一进程内多次构造不重复加载模型。
_FACEAPP_CACHE: Dict[Tuple, FaceAnalysis] = {}


def auto_device(device: str = "auto") -> str:
    if device != "auto":
        return device
    try:
        return "gpu" if torch.cuda.is_available() else "cpu"
    except Exception:
        return "cpu"


class InsightFaceEngine:
    def __init__(
        self,
        model_name: str = "buffalo_l",
        det_size: int = 320,
        device: str = "auto",
        min_confidence: float = DETECTOR_MIN_CONFIDENCE,
    ):
        self.model_name = model_name
        self.det_size: Tuple[int, int] = (det_size, det_size)
        self.device = auto_device(device)
        self.min_confidence = float(min_confidence)
        self.ctx_id = 0 if self.device == "gpu" else -1
        self._app: Optional[FaceAnalysis] = None
        self.embed_calls = 0

    def _ensure_app(self) -> FaceAnalysis:
        if self._app is not None:
            return self._app

        providers = ["CUDAExecutionProvider"] if self.device == "gpu" else ["CPUExecutionProvider"]
        key = (self.model_name, tuple(providers), self.ctx_id, self.det_size)
        cached = _FACEAPP_CACHE.get(key)
        if cached is not None:
            self._app = cached
            return cached

        try:
            with suppress_fds():
                app = FaceAnalysis(
                    name=self.model_name,
                    providers=providers,
                    allowed_modules=["detection", "recognition"],
                )
            buf = io.StringIO()
            with redirect_stdout(buf), redirect_stderr(buf):
                app.prepare(ctx_id=self.ctx_id, det_size=self.det_size)
        except Exception as e:
            logger.error(f"模型初始化失败: {e}")
            raise

        logger.info(f"已加载 InsightFace 模型: {self.model_name} ({self.device})")
        _FACEAPP_CACHE[key] = app
        self._app = app
        return app

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        """检测人脸，按置信度从高到低返回；低于 min_confidence 的直接丢弃。"""
        if frame_bgr is None or frame_bgr.ndim != 3:
            return []
        app = self._ensure_app()
        h, w = frame_bgr.shape[:2]
        bboxes, _ = app.det_model.detect(frame_bgr, max_num=0, metric="default")
        if bboxes is None or bboxes.shape[0] == 0:
            return []

        out: List[Detection] = []
        for row in bboxes:
            score = float(row[4])
            if score < self.min_confidence:
                continue
            x1, y1, x2, y2 = [float(v) for v in row[:4]]
            x1, y1 = max(0.0, x1), max(0.0, y1)
            x2, y2 = min(float(w), x2), min(float(h), y2)
            if x2 <= x1 or y2 <= y1:
                continue
            out.append(
                Detection(
                    bbox=BoundingBox(
                        center_x=(x1 + x2) / 2.0 / w,
                        center_y=(y1 + y2) / 2.0 / h,
                        width=(x2 - x1) / w,
                        height=(y2 - y1) / h,
                    ),
                    confidence=score,
                )
            )
        out.sort(key=lambda d: -d.confidence)
        return out

    def embed(self, face_rgb01: np.ndarray) -> np.ndarray:
        """提取 L2 归一化后的特征向量（只读）。"""
        app = self._ensure_app()
        rec_model = app.models.get("recognition")
        if rec_model is None:
            raise RuntimeError(f"{self.model_name} has no recognition model")
        # ArcFace 期望 uint8 BGR，get_feat 内部会缩放到模型输入尺寸
        feat = rec_model.get_feat([to_uint8_bgr(face_rgb01)])
        self.embed_calls += 1
        return as_embedding(l2_normalize(np.asarray(feat, dtype=np.float32).reshape(-1)))
