#!/usr/bin/env python3
"""
otps-scan - import endpoints from a QR code image
This is a separate binary for QR code scanning (slow to start due to OpenCV)
"""

import argparse
import os

from otps import add_common_options, fail, run_import
from otps_debug import debug_log, enable_debug
from otps_errors import OtpError
from otps_uri import parse_any_uri


def read_qr_code(image_path: str) -> str:
    """Return the text encoded in the QR code of an image"""
    debug_log("Loading OpenCV...")
    import cv2

    debug_log(f"Reading image: {image_path}")
    img = cv2.imread(image_path)
    if img is None:
        fail(f"Could not read image: {image_path}")

    debug_log("Detecting QR code...")
    detector = cv2.QRCodeDetector()
    data, _, _ = detector.detectAndDecode(img)

    if not data:
        fail("No QR code found in image")
    return data


def cmd_scan(args):
    """Scan QR code from image file"""
    if not os.path.exists(args.image):
        fail(f"File not found: {args.image}")

    data = read_qr_code(args.image)
    print(f"Found QR code data: {data[:50]}..." if len(data) > 50 else f"Found QR code data: {data}")
    print()

    try:
        entries = parse_any_uri(data)
    except ValueError as e:
        fail(str(e))

    run_import(args, entries)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="otps-scan",
        description="otps - QR Code Scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    add_common_options(parser)
    parser.add_argument("image", help="Path to image file containing QR code")
    parser.add_argument("--dry-run", "-n", action="store_true", help="Show what would be imported without saving")

    args = parser.parse_args(argv)
    if args.debug:
        enable_debug()

    debug_log("Entering main()")
    try:
        cmd_scan(args)
    except OtpError as e:
        fail(str(e))


if __name__ == "__main__":
    main()
