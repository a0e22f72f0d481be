import re
import sys
import logging
from pathlib import Path
from bs4 import BeautifulSoup, ProcessingInstruction

logger = logging.getLogger(__name__)

# Wrapper the reader site puts around the actual chapter text
DEFAULT_SELECTOR = ".readercontent-inner"

XML_ENCODING_RE = re.compile(r'''encoding=(["'])[^"']*\1''')


def rewrite_html(raw, selector=DEFAULT_SELECTOR):
    """
    Strip the reader-site chrome from one XHTML page.

    The body's children are replaced by the children of the first node
    matching ``selector``. Matches nested inside it are unwrapped in place, so
    the output never contains the marker and rewriting it again returns it
    unchanged. The page is re-encoded as UTF-8 and its XML declaration says so.

    Args:
        raw: Page bytes as served by the reader site
        selector: CSS selector of the node holding the real content

    Returns:
        The rewritten page as UTF-8 bytes, or ``raw`` itself when there is no
        body or no matching node inside it.
    """
    soup = BeautifulSoup(raw, 'html.parser')
    body = soup.find('body')
    if body is None:
        return raw

    node = body.select_one(selector)
    if node is None:
        return raw

    contents = [child.extract() for child in list(node.contents)]
    body.clear()
    body.extend(contents)
    for nested in body.select(selector):
        nested.unwrap()

    _declare_utf8(soup)
    return str(soup).encode('utf-8')


def _declare_utf8(soup):
    # bs4 fixes <meta charset> on output but leaves <?xml encoding="..."?> alone
    for node in list(soup.contents):
        if isinstance(node, ProcessingInstruction) and node.startswith('xml'):
            node.replace_with(ProcessingInstruction(XML_ENCODING_RE.sub('encoding="utf-8"', str(node))))


def reformat(input_file, selector=DEFAULT_SELECTOR):
    """Rewrite a saved page in place. Returns True if the file changed."""
    path = Path(input_file)
    content = path.read_bytes()
    rewritten = rewrite_html(content, selector)
    if rewritten == content:
        return False
    path.write_bytes(rewritten)
    logger.info("Reformatted %s", path)
    return True


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python reformat.py <page.xhtml> [selector]")
        sys.exit(1)

    selector = sys.argv[2] if len(sys.argv) > 2 else DEFAULT_SELECTOR
    changed = reformat(sys.argv[1], selector)
    print("Reformatted" if changed else "Nothing to reformat")
