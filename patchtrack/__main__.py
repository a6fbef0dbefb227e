"""
patchtrack Command Line Interface

Usage:
    patchtrack <command> [options]

Commands:
    match       Find a sample image in a target image
    config      Write an example matcher configuration
    version     Show version information

Examples:
    patchtrack match sample.png frame.png -r 120,80,20,20
    patchtrack match sample.png frame.png -r 120,80,40,40 -l 130,90,30 --mask ellipse
    patchtrack match sample.png frame.png -p preview.png -c matcher.json -v
    patchtrack config matcher.json
"""

import sys
import argparse
import logging
import math
from pathlib import Path

from patchtrack import __version__


def setup_logging(verbose: bool) -> None:
    """Send library log messages to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )


def parse_numbers(text: str, count: int) -> list[float]:
    """Parse a comma-separated list of exactly count numbers."""
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != count:
        raise argparse.ArgumentTypeError(f"Expected {count} comma-separated values, got '{text}'")
    try:
        return [float(p) for p in parts]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number in '{text}'") from None


def rect_arg(text: str) -> tuple[int, int, int, int]:
    x, y, w, h = parse_numbers(text, 4)
    return (int(x), int(y), int(w), int(h))


def line_arg(text: str) -> tuple[float, float, float]:
    return tuple(parse_numbers(text, 3))


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='patchtrack',
        description='Template matching with sub-pixel peak location',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        '-V', '--version',
        action='version',
        version=f'patchtrack {__version__}',
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Match command
    match_parser = subparsers.add_parser(
        'match',
        help='Find a sample image in a target image',
    )
    match_parser.add_argument('sample', help='Sample (template) image file')
    match_parser.add_argument('target', help='Target image file')
    match_parser.add_argument(
        '-r', '--rect',
        type=rect_arg,
        default=None,
        metavar='X,Y,W,H',
        help='Search rectangle (default: whole target)',
    )
    match_parser.add_argument(
        '-l', '--line',
        type=line_arg,
        default=None,
        metavar='X0,Y0,DEG',
        help='Restrict the search to a line through X0,Y0 at DEG degrees',
    )
    match_parser.add_argument(
        '--mask',
        choices=['none', 'rect', 'ellipse'],
        default='none',
        help='Template mask shape (default: none)',
    )
    match_parser.add_argument(
        '-p', '--preview',
        default=None,
        help='Write the match preview image to this file',
    )
    match_parser.add_argument(
        '-c', '--config',
        default=None,
        help='Matcher configuration file (JSON)',
    )
    match_parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Show debug log messages',
    )

    # Config command
    config_parser = subparsers.add_parser(
        'config',
        help='Write an example matcher configuration',
    )
    config_parser.add_argument(
        'path',
        nargs='?',
        default='matcher_config.json',
        help='Output file (default: matcher_config.json)',
    )

    # Version command
    subparsers.add_parser('version', help='Show version information')

    # Parse arguments
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    # Dispatch to appropriate command
    if args.command == 'match':
        return run_match(args)
    elif args.command == 'config':
        return run_config(args)
    elif args.command == 'version':
        print(f"patchtrack {__version__}")
        return 0
    else:
        parser.print_help()
        return 1


def load_image(path: str):
    """Read an image file into a PixelBuffer."""
    import cv2
    from patchtrack.core.buffer import PixelBuffer

    image = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError(f"Failed to load image: {path}")
    return PixelBuffer.from_bgr(image)


def run_match(args) -> int:
    """Run the match command."""
    import cv2
    from patchtrack.core.config import MatcherConfig
    from patchtrack.core.shapes import EllipseMask, RectMask
    from patchtrack.matching import TemplateMatcher

    setup_logging(args.verbose)

    for path in (args.sample, args.target):
        if not Path(path).exists():
            print(f"Error: Image file not found: {path}")
            return 1

    config = MatcherConfig.load(args.config) if args.config else MatcherConfig()
    config = MatcherConfig.from_env(base=config)

    try:
        sample = load_image(args.sample)
        target = load_image(args.target)
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    mask = None
    if args.mask == 'ellipse':
        mask = EllipseMask(0, 0, sample.width, sample.height)
    elif args.mask == 'rect':
        mask = RectMask(0, 0, sample.width, sample.height)

    matcher = TemplateMatcher(sample, mask=mask, config=config)
    rect = args.rect or (0, 0, target.width, target.height)

    if args.line is not None:
        x0, y0, degrees = args.line
        result = matcher.match_location_along_line(target, rect, x0, y0, math.radians(degrees))
    else:
        result = matcher.match_location(target, rect)

    template = matcher.template
    print(f"Template: {template.width}x{template.height} "
          f"(trim left={template.trim_left}, top={template.trim_top})")
    if not result.found:
        print("No match: search area does not fit in the target")
        print(f"  peak height: {result.peak_height}, peak width: {result.peak_width}")
        return 2

    x, y = result.location
    print(f"Match: ({x:.3f}, {y:.3f})")
    print(f"  integer match: {result.match_offset}")
    print(f"  searched: {result.search_rect.to_tuple()}")
    print(f"  peak height: {result.peak_height:.3f}, peak width: {result.peak_width:.3f}")
    status = "good" if result.is_good() else "poor"
    print(f"  {status} match (threshold {config.good_match_threshold})")

    if args.preview and result.preview is not None:
        cv2.imwrite(args.preview, result.preview.to_bgra())
        print(f"Wrote preview: {args.preview}")

    return 0


def run_config(args) -> int:
    """Write an example configuration file."""
    from patchtrack.core.config import create_example_config
    create_example_config(args.path)
    return 0


if __name__ == '__main__':
    sys.exit(main())
