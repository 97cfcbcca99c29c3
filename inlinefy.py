#!/usr/bin/env python3
from bs4 import BeautifulSoup
from inliner import inline_document
import argparse
import cssutils
import logging
import sys
from pathlib import Path


def setup_logging(verbose=False):
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(levelname)s: %(message)s',
    )
    # cssutils 自身の警告は表示しない (構文エラーは例外として届く)
    cssutils.log.setLevel(logging.CRITICAL)


def format_html(soup):
    """タグごとに改行・インデントした HTML を返す"""
    return soup.prettify().strip() + '\n'


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Inline the CSS of <style> blocks into style attributes of an HTML template '
                    'while keeping a cleaned-up copy of the stylesheet and its media queries.'
    )
    parser.add_argument(
        '-t', '--template',
        type=str,
        required=True,
        help='Path to the input HTML template'
    )
    parser.add_argument(
        '-o', '--output',
        type=str,
        help='Path to the output HTML file (if not specified, the template is overwritten)'
    )
    parser.add_argument(
        '--parser',
        type=str,
        default='lxml',
        help='BeautifulSoup tree builder used to load the template (default: lxml)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Show debug logging'
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        input_path = Path(args.template)
        if not input_path.exists():
            print(f"Error: Input file '{args.template}' does not exist", file=sys.stderr)
            return 1

        with open(input_path, 'r', encoding='utf-8') as f:
            html_content = f.read()

        soup = BeautifulSoup(html_content.strip(), args.parser)
        converted_html = format_html(inline_document(soup))

        output_path = Path(args.output) if args.output else input_path
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(converted_html)

    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
