"""命令行入口：摄像头实时识别 / 多角度注册 / 查看与导出家庭成员图库。

按键（run 模式）：
  r      开始/停止识别
  SPACE  注册时采集当前角度
  s      注册完成后保存
  c      取消注册
  q      退出
"""

from __future__ import annotations

import argparse
import platform
import sys

from pathlib import Path

import cv2

from homeface.config import (
    APP_VERSION,
    DETECTOR_MIN_CONFIDENCE,
    GALLERY_DIR,
    MATCH_THRESHOLD,
    RECOGNITION_COOLDOWN_MS,
)
from homeface.errors import HomefaceError
from homeface.face.enrollment import EnrollmentSession
from homeface.face.gallery import Gallery, GalleryConfig, JsonFileBackend
from homeface.face.matcher import CosineMatcher, MatcherConfig
from homeface.face.pipeline import FramePipeline
from homeface.face.throttle import RecognitionThrottle, ThrottleConfig
from homeface.utils.draw import draw_frame_overlay
from homeface.utils.log import get_logger, set_verbosity
from homeface.utils.serializer import format_timestamp

logger = get_logger(__name__)


def _open_gallery(gallery_dir: str) -> Gallery:
    cfg = GalleryConfig(device_info={"appVersion": APP_VERSION, "platform": platform.platform()})
    return Gallery(JsonFileBackend(Path(gallery_dir), cfg), cfg).load()


def cmd_list(args) -> int:
    gallery = _open_gallery(args.gallery)
    if len(gallery) == 0:
        logger.info("图库为空")
        return 0
    for identity in gallery.list():
        logger.info(
            f"{identity.name}: {len(identity.samples)} 个角度, 识别 {identity.recognition_count} 次, "
            f"注册于 {format_timestamp(identity.registered_at)}, 最近出现 {format_timestamp(identity.last_seen_at) or '-'}"
        )
    return 0


def cmd_export(args) -> int:
    gallery = _open_gallery(args.gallery)
    fp = gallery.write_export(Path(args.output))
    logger.info(f"已导出 {len(gallery)} 位成员 -> {fp}")
    return 0


def cmd_remove(args) -> int:
    gallery = _open_gallery(args.gallery)
    if not gallery.remove(args.name):
        logger.error(f"未找到成员: {args.name}")
        return 1
    return 0


def cmd_run(args) -> int:
    # 延迟导入：list/export 不需要加载模型
    from homeface.face.recognizer import InsightFaceEngine

    gallery = _open_gallery(args.gallery)
    engine = InsightFaceEngine(det_size=args.det_size, device=args.device, min_confidence=args.min_confidence)
    throttle = RecognitionThrottle(
        CosineMatcher(MatcherConfig(threshold=args.threshold)),
        gallery,
        ThrottleConfig(cooldown_ms=args.cooldown_ms),
    )
    session = EnrollmentSession(gallery, device_info={"platform": platform.platform()})
    session.set_camera(args.camera_facing)
    pipeline = FramePipeline(engine.detect, engine.embed, gallery, throttle, session)

    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        logger.error(f"无法打开摄像头: {args.camera}")
        return 2

    status = None
    try:
        if args.enroll:
            status = pipeline.start_enrollment(args.enroll, overwrite=args.overwrite)
            logger.info(status)
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                logger.error("读取摄像头画面失败")
                return 2
            result = pipeline.process_frame(frame)
            if result.match is not None:
                status = f"欢迎回家, {result.match.name}!"
                logger.info(f"{status} (相似度 {result.match.score:.3f})")

            # 在副本上绘制：原始帧仍用于注册采集
            cv2.imshow("homeface", draw_frame_overlay(frame.copy(), result, status))
            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            try:
                if key == ord("r"):
                    status = pipeline.toggle_recognition()
                elif key == ord(" "):
                    if pipeline.capture() is not None:
                        status = session.prompt()
                elif key == ord("s"):
                    identity = pipeline.commit()
                    status = f"已保存 {identity.name}"
                elif key == ord("c"):
                    pipeline.cancel_enrollment()
                    status = "注册已取消"
                else:
                    continue
                logger.info(status)
            except HomefaceError as e:
                status = str(e)
                logger.warning(status)
    finally:
        cap.release()
        cv2.destroyAllWindows()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="家庭成员人脸识别")
    parser.add_argument("--gallery", "-g", default=GALLERY_DIR, help="图库目录")
    parser.add_argument("--verbose", "-v", action="store_true", help="输出调试日志")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="摄像头实时识别/注册")
    run.add_argument("--camera", type=int, default=0, help="摄像头编号")
    run.add_argument("--camera-facing", choices=["front", "back"], default="front", help="摄像头朝向（写入注册样本）")
    run.add_argument("--det-size", type=int, default=320, help="InsightFace det_size")
    run.add_argument("--device", choices=["auto", "cpu", "gpu"], default="auto", help="计算设备")
    run.add_argument("--min-confidence", type=float, default=DETECTOR_MIN_CONFIDENCE, help="人脸检测置信度阈值")
    run.add_argument("--threshold", "-t", type=float, default=MATCH_THRESHOLD, help="识别相似度阈值")
    run.add_argument("--cooldown-ms", type=int, default=RECOGNITION_COOLDOWN_MS, help="识别成功后的冷却时间（毫秒）")
    run.add_argument("--enroll", default=None, help="启动后立即注册该成员")
    run.add_argument("--overwrite", action="store_true", help="确认覆盖已存在的同名成员")
    run.set_defaults(func=cmd_run)

    ls = sub.add_parser("list", help="列出已注册成员")
    ls.set_defaults(func=cmd_list)

    exp = sub.add_parser("export", help="导出图库备份")
    exp.add_argument("output", help="导出 JSON 文件路径")
    exp.set_defaults(func=cmd_export)

    rm = sub.add_parser("remove", help="删除成员")
    rm.add_argument("name")
    rm.set_defaults(func=cmd_remove)

    args = parser.parse_args(argv)
    set_verbosity(args.verbose)
    try:
        return int(args.func(args))
    except HomefaceError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
