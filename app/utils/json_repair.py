"""
JSON 추출 및 복구 유틸리티
LLM 응답에서 JSON 객체를 추출하고 잘린/중복된 출력을 복구

그라운딩 모드의 Gemini는 JSON을 두 번 출력하거나, 마크다운 펜스로 감싸거나,
토큰 한도로 중간에 잘린 출력을 자주 반환한다. 모든 함수는 순수 함수다.
"""
import re
from typing import Iterator, List, Optional, Tuple

_JSON_FENCE_RE = re.compile(r"```json\s*(.*?)```", re.DOTALL)
_GENERIC_FENCE_RE = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}


def _structural_chars(text: str, start: int = 0) -> Iterator[Tuple[int, str]]:
    """
    문자열 리터럴 밖의 구조 문자 위치를 순회

    이스케이프된 문자를 건너뛰고, 따옴표를 만날 때마다 문자열 상태를 토글한다.
    """
    in_string = False
    escape_next = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape_next:
            escape_next = False
            continue

        if ch == "\\":
            escape_next = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if not in_string and ch in "{}[],:":
            yield i, ch


def _ends_inside_string(text: str) -> bool:
    """텍스트가 닫히지 않은 문자열 안에서 끝나는지 확인"""
    in_string = False
    escape_next = False
    for ch in text:
        if escape_next:
            escape_next = False
            continue
        if ch == "\\":
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
    return in_string


def strip_wrappers(text: str) -> str:
    """앞뒤 공백, 백틱, 선행 'json' 마커 제거"""
    cleaned = text.strip().strip("`").strip()
    if cleaned[:4].lower() == "json":
        cleaned = cleaned[4:].strip()
    return cleaned


def find_first_object_end(text: str) -> Optional[int]:
    """
    첫 번째 균형 잡힌 JSON 객체의 끝 위치(exclusive) 반환

    Returns:
        끝 위치 또는 None (객체가 닫히지 않음)
    """
    first_brace = text.find("{")
    if first_brace == -1:
        return None

    depth = 0
    for i, ch in _structural_chars(text, first_brace):
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def extract_first_object(text: str) -> str:
    """
    첫 번째 완결된 JSON 객체만 추출 (중복 출력 방어)

    객체가 끝까지 닫히지 않으면 ```json 펜스를 찾고, 그마저 없으면 원문 반환.
    """
    text = text.strip()
    first_brace = text.find("{")
    if first_brace == -1:
        return text

    end = find_first_object_end(text)
    if end is not None:
        return text[first_brace:end]

    fence = _JSON_FENCE_RE.search(text)
    if fence:
        return fence.group(1).strip()

    return text


def remove_duplicate_json(text: str) -> str:
    """
    중복 JSON 제거

    - 첫 객체가 완결되면 그 지점에서 자른다 (뒤에 두 번째 객체가 붙어 있어도).
    - 첫 객체가 닫히지 않았는데 문자열 밖에서 두 번째 '{'가 나타나면,
      그 앞의 마지막 ',' 또는 '['까지 잘라낸 뒤 구조 복구를 시도한다.
    """
    text = text.strip()
    first_brace = text.find("{")
    if first_brace == -1:
        return text

    end = find_first_object_end(text)
    if end is not None:
        return text[first_brace:end]

    # 잘린 객체 중간에서 시작된 두 번째 객체 탐색
    second_brace = None
    for i, ch in _structural_chars(text, first_brace + 1):
        if ch == "{":
            second_brace = i
            break

    if second_brace is None:
        return text

    cut_point = max(text.rfind(",", 0, second_brace), text.rfind("[", 0, second_brace))
    if cut_point <= first_brace:
        return text

    if text[cut_point] == "[":
        cut_point += 1

    return repair_structure(text[first_brace:cut_point])


def _last_complete_element(text: str) -> int:
    """문자열 밖의 마지막 ',' 위치 또는 마지막 '[' 다음 위치"""
    cut = -1
    for i, ch in _structural_chars(text):
        if ch == ",":
            cut = i
        elif ch == "[":
            cut = i + 1
    return cut


def _open_stack(text: str) -> List[str]:
    """닫히지 않은 여는 괄호 스택"""
    stack: List[str] = []
    for _, ch in _structural_chars(text):
        if ch in "{[":
            stack.append(ch)
        elif ch in "}]" and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()
    return stack


def repair_structure(text: str) -> str:
    """
    잘린 JSON 구조 복구

    1. 괄호 수 비교 (문자열 인식)
    2. 대괄호가 열려 있으면 마지막 완결 요소까지 자르기
    3. 닫히지 않은 문자열 닫기
    4. 부족한 닫는 괄호를 안쪽부터 추가
    """
    text = text.strip()

    counts = {"{": 0, "}": 0, "[": 0, "]": 0}
    for _, ch in _structural_chars(text):
        if ch in counts:
            counts[ch] += 1

    if counts["{"] == counts["}"] and counts["["] == counts["]"]:
        return text

    if counts["["] > counts["]"]:
        cut = _last_complete_element(text)
        if cut > 0:
            text = text[:cut]

    if _ends_inside_string(text):
        text += '"'

    text = text.rstrip()
    if text.endswith(":"):
        # 값 없이 끝난 키 제거
        text = text[: max(text.rfind(","), text.rfind("{") + 1)]
    while text.endswith(","):
        text = text[:-1].rstrip()

    for opener in reversed(_open_stack(text)):
        text += _CLOSERS[opener]

    return text


def extract_from_markdown(text: str) -> str:
    """
    마크다운/텍스트에서 JSON 추출

    ```json 블록 → 일반 ``` 블록 → 첫 '{'부터 끝까지 순으로 시도
    """
    text = text.strip()

    fence = _JSON_FENCE_RE.search(text)
    if fence:
        extracted = fence.group(1).strip()
        if extracted.startswith("{"):
            return extracted

    fence = _GENERIC_FENCE_RE.search(text)
    if fence:
        extracted = fence.group(1).strip()
        if extracted.startswith("{"):
            return extracted

    first_brace = text.find("{")
    if first_brace != -1:
        return text[first_brace:]

    return text
