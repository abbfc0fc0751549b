#!/usr/bin/env python3
"""
CLI for the document scanner.

Usage:
    python -m document_scanner -i photo.jpg
    python -m document_scanner -i photo.jpg -o page.png --width 1200 --enhance
    python -m document_scanner -i clip.mp4 --video
"""

import argparse
import sys
from pathlib import Path

import cv2

from .config import ScannerConfig, setup_logging
from .rectifier import InvalidQuad
from .session import ScanSession


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Detect and rectify a document in a photo or video',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:

  # Rectify a photo (writes photo_scanned.png next to it)
  python -m document_scanner -i photo.jpg

  # Custom output, wider page, padded and enhanced
  python -m document_scanner -i photo.jpg -o page.png --width 1600 --padding 0.05 --enhance

  # Track through a video and save the first stable page
  python -m document_scanner -i clip.mp4 --video
        """
    )

    parser.add_argument(
        '-i', '--input',
        required=True,
        help='Input image (or video with --video)'
    )

    parser.add_argument(
        '-o', '--output',
        help='Output file (default: <input>_scanned.png)'
    )

    parser.add_argument(
        '--width',
        type=int,
        help='Width of the rectified page in pixels'
    )

    parser.add_argument(
        '--padding',
        type=float,
        help='Border around the page as a fraction of the width'
    )

    parser.add_argument(
        '--enhance',
        action='store_true',
        help='Apply contrast enhancement and sharpening to the page'
    )

    parser.add_argument(
        '--video',
        action='store_true',
        help='Treat input as a video and capture the first stable page'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Log detection and tracking details'
    )

    return parser.parse_args(argv)


def build_config(args) -> ScannerConfig:
    overrides = {}
    if args.width is not None:
        overrides['output_width'] = args.width
    if args.padding is not None:
        overrides['padding_percent'] = args.padding
    if args.enhance:
        overrides['enhance'] = True
    if args.verbose:
        overrides['logging_enabled'] = True
    return ScannerConfig.from_env(**overrides)


def scan_image(session: ScanSession, path: Path):
    image = cv2.imread(str(path))
    if image is None:
        print(f"Error: Failed to load image: {path}")
        return None

    print(f"Image dimensions: {image.shape[1]}x{image.shape[0]} px")
    result = session.detect(image)
    if not result.found:
        print(f"✗ Document was not detected (best score {result.stats.best_score:.2f})")
        return None

    print(f"✓ Document detected via {result.stats.method} (score {result.score:.2f})")
    return session.capture(image, quad=result.quad)


def scan_video(session: ScanSession, path: Path):
    capture = cv2.VideoCapture(str(path))
    if not capture.isOpened():
        print(f"Error: Failed to open video: {path}")
        return None

    fps = capture.get(cv2.CAP_PROP_FPS) or 30.0
    frame_index = 0
    try:
        while True:
            ok, frame = capture.read()
            if not ok:
                break
            update = session.feed(frame, now_ms=frame_index * 1000.0 / fps)
            frame_index += 1
            if update is not None and update.page is not None:
                print(f"✓ Stable page captured at frame {frame_index}")
                return update.page
    finally:
        capture.release()

    print(f"✗ No stable document in {frame_index} frames")
    return None


def main(argv=None):
    """Main CLI function"""
    args = parse_args(argv)

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: Input not found: {input_path}")
        sys.exit(1)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: Invalid configuration: {e}")
        sys.exit(1)
    setup_logging(config)

    session = ScanSession(config)

    print(f"Processing: {input_path.name}")
    try:
        page = scan_video(session, input_path) if args.video else scan_image(session, input_path)
    except InvalidQuad as e:
        print(f"✗ Cannot rectify document: {e}")
        sys.exit(1)

    if page is None:
        sys.exit(1)

    output_path = Path(args.output) if args.output else input_path.with_name(f"{input_path.stem}_scanned.png")
    cv2.imwrite(str(output_path), page.processed)
    print(f"✓ Result saved: {output_path} ({page.processed.shape[1]}x{page.processed.shape[0]} px)")


if __name__ == '__main__':
    main()
