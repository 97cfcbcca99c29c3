from bs4 import BeautifulSoup
from bs4.element import Stylesheet
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union
import cssutils
import logging
import re
import soupsieve
import uuid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Declaration:
    property: str
    value: str

    @property
    def text(self) -> str:
        return f"{self.property}: {self.value};"


@dataclass(frozen=True)
class PlainRule:
    selectors: Tuple[str, ...]
    declarations: Tuple[Declaration, ...]


@dataclass(frozen=True)
class MediaRule:
    condition: str
    rules: Tuple[PlainRule, ...]


Rule = Union[PlainRule, MediaRule]
StyleMap = Dict[str, List[Declaration]]

# 宣言区切りの ; のうち、url(...) などの括弧内にあるものは除く
DECLARATION_SEPARATOR = re.compile(r';(?![^(]*\))')
CAMEL_CASE_PROPERTY = re.compile(r'[A-Za-z][a-z0-9]*(?:[A-Z][a-z0-9]*)+')

PLACEHOLDER_DECLARATION = 'color: black;'


# ---------------------------------------------------------------------------
# スタイル抽出
# ---------------------------------------------------------------------------

def parse_stylesheet(css_text):
    """
    CSSテキストを PlainRule / MediaRule のリストに変換する
    構文エラーは xml.dom.SyntaxErr としてそのまま送出される
    """
    parser = cssutils.CSSParser(raiseExceptions=True, validate=False)
    sheet = parser.parseString(css_text)

    # 値を読む間だけ #ff0000 を #f00 に短縮させない
    minimize_color_hash = cssutils.ser.prefs.minimizeColorHash
    cssutils.ser.prefs.minimizeColorHash = False
    try:
        rules = []
        for rule in sheet.cssRules:
            if rule.type == rule.STYLE_RULE:
                rules.append(_to_plain_rule(rule))
            elif rule.type == rule.MEDIA_RULE:
                nested = tuple(
                    _to_plain_rule(child)
                    for child in rule.cssRules
                    if child.type == child.STYLE_RULE
                )
                rules.append(MediaRule(rule.media.mediaText, nested))
    finally:
        cssutils.ser.prefs.minimizeColorHash = minimize_color_hash
    return rules


def _to_plain_rule(rule):
    selectors = tuple(selector.selectorText for selector in rule.selectorList)
    declarations = []
    # all=True で同じプロパティの重複もそのまま残す
    for prop in rule.style.getProperties(all=True):
        value = prop.value
        if prop.priority:
            value = f"{value} !{prop.priority}"
        declarations.append(Declaration(prop.name, value))
    return PlainRule(selectors, tuple(declarations))


def extract_rules(soup) -> List[Rule]:
    """head → body の順に <style> の中身を集めてパースする"""
    style_tags = soup.select('head style') + soup.select('body style')
    css_texts = []
    for style in style_tags:
        css_text = style.get_text().strip()
        if css_text:
            css_texts.append(css_text)

    if not css_texts:
        return []

    rules = parse_stylesheet('\n'.join(css_texts))
    logger.debug("Parsed %d rules from %d style tags", len(rules), len(css_texts))
    return rules


# ---------------------------------------------------------------------------
# セレクタごとの集約
# ---------------------------------------------------------------------------

def aggregate_rules(rules: List[Rule]) -> StyleMap:
    style_map = {}
    for rule in rules:
        # メディアクエリは filter_media_rules で別に扱う
        if isinstance(rule, MediaRule):
            continue
        if not rule.selectors or not rule.declarations:
            continue
        for selector in rule.selectors:
            style_map.setdefault(selector, []).extend(rule.declarations)
    return style_map


# ---------------------------------------------------------------------------
# インラインスタイルの操作
# ---------------------------------------------------------------------------

def normalize_property(name):
    """fontWeight / font-weight のどちらで書かれていても font-weight にそろえる"""
    name = name.strip()
    if name.startswith('--'):
        return name
    # COLOR のような大文字だけの名前はキャメルケースとみなさない
    if not name.isupper() and CAMEL_CASE_PROPERTY.fullmatch(name):
        return re.sub(r'[A-Z]', lambda m: '-' + m.group(0).lower(), name)
    return name.lower()


def parse_style_attribute(style_text):
    styles = {}
    if not style_text:
        return styles
    for style_def in DECLARATION_SEPARATOR.split(style_text):
        if ':' not in style_def:
            continue
        prop, value = style_def.split(':', 1)
        prop = normalize_property(prop)
        # プロパティ名のない断片は黙って捨てる
        if not prop:
            continue
        styles[prop] = value.strip()
    return styles


def declarations_to_dict(declarations):
    styles = {}
    for declaration in declarations:
        styles[declaration.property] = declaration.value
    return styles


def style_dict_to_string(styles):
    normalized = {}
    for prop, value in styles.items():
        normalized[normalize_property(prop)] = value
    return ' '.join(f"{prop}: {value};" for prop, value in normalized.items())


def select_elements(soup, selector, unsupported=None):
    """
    セレクタに一致する要素を返す
    クエリエンジンが解釈できないセレクタ (::before, :first-line など) は一致なしとして扱う
    unsupported を渡すと、同じセレクタの警告は1回だけになる
    """
    try:
        return soup.select(selector)
    except (soupsieve.SelectorSyntaxError, NotImplementedError) as e:
        if unsupported is None or selector not in unsupported:
            logger.warning("Skipping unsupported selector %r: %s", selector, e)
        if unsupported is not None:
            unsupported.add(selector)
        return []


# ---------------------------------------------------------------------------
# インライン化 (マージ → 復元)
# ---------------------------------------------------------------------------

def ordered_selectors(style_map):
    """
    詳細度の代わりに文字列順を使う
    辞書順で大きいセレクタほど後で適用されるので、同じプロパティでは後勝ちになる
    (.intro.box は .box より後に適用される)
    """
    return sorted(style_map)


def merge_inline_styles(soup, style_map, unsupported=None):
    # id(要素) -> (要素, 元のインラインスタイル)
    snapshots = {}

    for selector in ordered_selectors(style_map):
        elements = select_elements(soup, selector, unsupported)
        if not elements:
            continue

        proposed_styles = declarations_to_dict(style_map[selector])
        for element in elements:
            element_id = id(element)
            if element_id not in snapshots:
                snapshots[element_id] = (
                    element,
                    parse_style_attribute(element.get('style')),
                )

            current_styles = parse_style_attribute(element.get('style'))
            merged_styles = {**current_styles, **proposed_styles}
            element['style'] = style_dict_to_string(merged_styles)

    # 元々インラインで指定されていたプロパティは必ず元の値に戻す
    for element, original_styles in snapshots.values():
        current_styles = parse_style_attribute(element.get('style'))
        final_styles = {**current_styles, **original_styles}
        element['style'] = style_dict_to_string(final_styles)

    logger.debug("Inlined styles on %d elements", len(snapshots))
    return len(snapshots)


# ---------------------------------------------------------------------------
# メディアクエリの絞り込み
# ---------------------------------------------------------------------------

def new_marker():
    return f"inlinefy-{uuid.uuid4().hex}"


def unique_declarations(declarations):
    """同じ宣言が重なっている場合は最後の1つだけ残す"""
    last_index = {declaration: index for index, declaration in enumerate(declarations)}
    return [
        declaration for index, declaration in enumerate(declarations)
        if last_index[declaration] == index
    ]


def render_rule(selectors, declarations):
    lines = '\n'.join(declaration.text for declaration in unique_declarations(declarations))
    return f"{', '.join(selectors)} {{\n{lines}\n}}"


def filter_media_rules(soup, rules, marker, unsupported=None):
    """
    ドキュメント内に一致する要素があるセレクタだけを残したメディアクエリのテキストを返す
    """
    media_blocks = []
    for rule in rules:
        if not isinstance(rule, MediaRule):
            continue

        kept_rules = []
        for nested in rule.rules:
            kept_selectors = [
                selector for selector in nested.selectors
                if select_elements(soup, selector, unsupported)
            ]
            if kept_selectors:
                rendered = render_rule(kept_selectors, nested.declarations)
                if rendered not in kept_rules:
                    kept_rules.append(rendered)

        if not kept_rules:
            logger.debug("Dropping @media %s: no selectors match", rule.condition)
            continue

        placeholder = f".{marker} {{ {PLACEHOLDER_DECLARATION} }}"
        body = '\n'.join([placeholder] + kept_rules)
        block = f"@media {rule.condition} {{\n{body}\n}}"
        # 再実行時に書き戻した同じブロックが複数読み込まれても1つにまとめる
        if block not in media_blocks:
            media_blocks.append(block)

    return '\n'.join(media_blocks)


# ---------------------------------------------------------------------------
# スタイルシートの再構築
# ---------------------------------------------------------------------------

def build_stylesheet_text(style_map, media_text):
    blocks = [render_rule([selector], declarations) for selector, declarations in style_map.items()]
    if media_text:
        blocks.append(media_text)
    return '\n'.join(blocks)


def _new_style_tag(soup):
    style = soup.new_tag('style')
    style.string = Stylesheet('')
    return style


def _ensure_head(soup):
    heads = soup.find_all('head')
    if heads:
        return heads
    head = soup.new_tag('head')
    (soup.find('html') or soup).insert(0, head)
    return [head]


def _ensure_body(soup):
    body = soup.find('body')
    if body is None:
        body = soup.new_tag('body')
        (soup.find('html') or soup).append(body)
    return body


def _is_empty(tag):
    return tag.find(True) is None and not tag.get_text(strip=True)


def head_level_styles(soup):
    return soup.select('head > style')


def reconstruct_stylesheet(soup, style_map, media_text):
    """
    整理したスタイルシートを head に2つ、body の先頭に1つ書き戻す
    style_map が空なら何もしない
    """
    if not style_map:
        return None

    heads = _ensure_head(soup)
    if not any(head.find('style') for head in heads):
        heads[0].append(_new_style_tag(soup))

    # head 直下の <style> はちょうど2つにする
    styles = head_level_styles(soup)
    while len(styles) < 2:
        head = soup.new_tag('head')
        head.append(_new_style_tag(soup))
        soup.find_all('head')[-1].insert_after(head)
        styles.append(head.find('style'))
    for extra in styles[2:]:
        extra.decompose()

    for head in soup.find_all('head'):
        if _is_empty(head):
            head.decompose()

    stylesheet_text = build_stylesheet_text(style_map, media_text)
    for style in head_level_styles(soup):
        style.string = Stylesheet(stylesheet_text)

    body = _ensure_body(soup)
    body_styles = body.find_all('style')
    if body_styles:
        body_style = body_styles[0].extract()
        for extra in body_styles[1:]:
            extra.decompose()
    else:
        body_style = _new_style_tag(soup)
    body.insert(0, body_style)
    body_style.string = Stylesheet(stylesheet_text)

    return stylesheet_text


# ---------------------------------------------------------------------------
# パイプライン
# ---------------------------------------------------------------------------

def inline_document(soup):
    rules = extract_rules(soup)
    style_map = aggregate_rules(rules)
    unsupported = set()

    merge_inline_styles(soup, style_map, unsupported)
    media_text = filter_media_rules(soup, rules, new_marker(), unsupported)
    reconstruct_stylesheet(soup, style_map, media_text)
    return soup


def convert_css_to_inline(html_content, features='lxml'):
    soup = BeautifulSoup(html_content, features)
    return inline_document(soup)
