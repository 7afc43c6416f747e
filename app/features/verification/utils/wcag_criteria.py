"""
WCAG 2.1 success criteria catalogue.

Levels are cumulative: AA conformance includes every A criterion and AAA
includes everything.
"""
from typing import List, NamedTuple

from app.features.scan.models.scan import WcagLevel


class WcagCriterion(NamedTuple):
    id: str
    level: str
    title: str
    description: str


LEVELS_INCLUDED = {
    WcagLevel.A: ("A",),
    WcagLevel.AA: ("A", "AA"),
    WcagLevel.AAA: ("A", "AA", "AAA"),
}

WCAG_CRITERIA: List[WcagCriterion] = [
    WcagCriterion("1.1.1", "A", "Non-text Content",
                  "All non-text content has a text alternative that serves the equivalent purpose"),
    WcagCriterion("1.2.1", "A", "Audio-only and Video-only (Prerecorded)",
                  "Alternative for time-based media or audio description is provided"),
    WcagCriterion("1.2.2", "A", "Captions (Prerecorded)",
                  "Captions are provided for prerecorded audio content in synchronized media"),
    WcagCriterion("1.2.3", "A", "Audio Description or Media Alternative (Prerecorded)",
                  "Audio description or full text alternative is provided for prerecorded video"),
    WcagCriterion("1.2.4", "AA", "Captions (Live)",
                  "Captions are provided for all live audio content in synchronized media"),
    WcagCriterion("1.2.5", "AA", "Audio Description (Prerecorded)",
                  "Audio description is provided for all prerecorded video content"),
    WcagCriterion("1.2.6", "AAA", "Sign Language (Prerecorded)",
                  "Sign language interpretation is provided for prerecorded audio content"),
    WcagCriterion("1.2.7", "AAA", "Extended Audio Description (Prerecorded)",
                  "Extended audio description is provided when pauses in audio are insufficient"),
    WcagCriterion("1.2.8", "AAA", "Media Alternative (Prerecorded)",
                  "Alternative for time-based media is provided for prerecorded synchronized media"),
    WcagCriterion("1.2.9", "AAA", "Audio-only (Live)",
                  "Alternative for time-based media is provided for live audio-only content"),
    WcagCriterion("1.3.1", "A", "Info and Relationships",
                  "Information, structure, and relationships can be programmatically determined"),
    WcagCriterion("1.3.2", "A", "Meaningful Sequence",
                  "Correct reading sequence can be programmatically determined"),
    WcagCriterion("1.3.3", "A", "Sensory Characteristics",
                  "Instructions do not rely solely on sensory characteristics"),
    WcagCriterion("1.3.4", "AA", "Orientation",
                  "Content does not restrict its view and operation to a single display orientation"),
    WcagCriterion("1.3.5", "AA", "Identify Input Purpose",
                  "Purpose of input fields can be programmatically determined"),
    WcagCriterion("1.3.6", "AAA", "Identify Purpose",
                  "Purpose of UI components, icons, and regions can be programmatically determined"),
    WcagCriterion("1.4.1", "A", "Use of Color",
                  "Color is not used as the only visual means of conveying information"),
    WcagCriterion("1.4.2", "A", "Audio Control",
                  "Mechanism is available to pause or stop audio that plays automatically"),
    WcagCriterion("1.4.3", "AA", "Contrast (Minimum)",
                  "Text has a contrast ratio of at least 4.5:1 (3:1 for large text)"),
    WcagCriterion("1.4.4", "AA", "Resize Text",
                  "Text can be resized up to 200% without loss of content or functionality"),
    WcagCriterion("1.4.5", "AA", "Images of Text",
                  "Text is used instead of images of text, with limited exceptions"),
    WcagCriterion("1.4.6", "AAA", "Contrast (Enhanced)",
                  "Text has a contrast ratio of at least 7:1 (4.5:1 for large text)"),
    WcagCriterion("1.4.7", "AAA", "Low or No Background Audio",
                  "Prerecorded audio has minimal or no background sounds"),
    WcagCriterion("1.4.8", "AAA", "Visual Presentation",
                  "Visual presentation of text blocks provides specific formatting controls"),
    WcagCriterion("1.4.9", "AAA", "Images of Text (No Exception)",
                  "Images of text are only used for decoration or where essential"),
    WcagCriterion("1.4.10", "AA", "Reflow",
                  "Content can be presented without horizontal scrolling at 320 CSS pixels width"),
    WcagCriterion("1.4.11", "AA", "Non-text Contrast",
                  "UI components and graphical objects have a contrast ratio of at least 3:1"),
    WcagCriterion("1.4.12", "AA", "Text Spacing",
                  "No loss of content or functionality when text spacing is adjusted"),
    WcagCriterion("1.4.13", "AA", "Content on Hover or Focus",
                  "Additional content triggered by hover or focus is dismissible, hoverable, and persistent"),
    WcagCriterion("2.1.1", "A", "Keyboard",
                  "All functionality is available from a keyboard"),
    WcagCriterion("2.1.2", "A", "No Keyboard Trap",
                  "Keyboard focus can be moved away from any component"),
    WcagCriterion("2.1.3", "AAA", "Keyboard (No Exception)",
                  "All functionality is available from a keyboard without exception"),
    WcagCriterion("2.1.4", "A", "Character Key Shortcuts",
                  "Character key shortcuts can be turned off, remapped, or only active on focus"),
    WcagCriterion("2.2.1", "A", "Timing Adjustable",
                  "Time limits can be turned off, adjusted, or extended"),
    WcagCriterion("2.2.2", "A", "Pause, Stop, Hide",
                  "Moving, blinking, or auto-updating content can be paused, stopped, or hidden"),
    WcagCriterion("2.2.3", "AAA", "No Timing",
                  "Timing is not an essential part of the event or activity"),
    WcagCriterion("2.2.4", "AAA", "Interruptions",
                  "Interruptions can be postponed or suppressed"),
    WcagCriterion("2.2.5", "AAA", "Re-authenticating",
                  "User can continue activity without loss of data after re-authenticating"),
    WcagCriterion("2.2.6", "AAA", "Timeouts",
                  "Users are warned of the duration of any user inactivity that could cause data loss"),
    WcagCriterion("2.3.1", "A", "Three Flashes or Below Threshold",
                  "Content does not contain anything that flashes more than three times per second"),
    WcagCriterion("2.3.2", "AAA", "Three Flashes",
                  "Web pages do not contain anything that flashes more than three times per second"),
    WcagCriterion("2.3.3", "AAA", "Animation from Interactions",
                  "Motion animation triggered by interaction can be disabled"),
    WcagCriterion("2.4.1", "A", "Bypass Blocks",
                  "Mechanism is available to bypass blocks of repeated content"),
    WcagCriterion("2.4.2", "A", "Page Titled",
                  "Web pages have titles that describe topic or purpose"),
    WcagCriterion("2.4.3", "A", "Focus Order",
                  "Focusable components receive focus in a logical order"),
    WcagCriterion("2.4.4", "A", "Link Purpose (In Context)",
                  "Purpose of each link can be determined from link text or context"),
    WcagCriterion("2.4.5", "AA", "Multiple Ways",
                  "More than one way is available to locate a web page within a set"),
    WcagCriterion("2.4.6", "AA", "Headings and Labels",
                  "Headings and labels describe topic or purpose"),
    WcagCriterion("2.4.7", "AA", "Focus Visible",
                  "Keyboard focus indicator is visible"),
    WcagCriterion("2.4.8", "AAA", "Location",
                  "Information about user location within a set of web pages is available"),
    WcagCriterion("2.4.9", "AAA", "Link Purpose (Link Only)",
                  "Purpose of each link can be identified from link text alone"),
    WcagCriterion("2.4.10", "AAA", "Section Headings",
                  "Section headings are used to organize content"),
    WcagCriterion("2.5.1", "A", "Pointer Gestures",
                  "Functionality that uses multipoint or path-based gestures has single pointer alternative"),
    WcagCriterion("2.5.2", "A", "Pointer Cancellation",
                  "Single pointer operation can be aborted or undone"),
    WcagCriterion("2.5.3", "A", "Label in Name",
                  "Accessible name contains the visible label text"),
    WcagCriterion("2.5.4", "A", "Motion Actuation",
                  "Functionality triggered by device motion can also be operated by UI components"),
    WcagCriterion("2.5.5", "AAA", "Target Size",
                  "Target size for pointer inputs is at least 44x44 CSS pixels"),
    WcagCriterion("2.5.6", "AAA", "Concurrent Input Mechanisms",
                  "Content does not restrict use of input modalities available on a platform"),
    WcagCriterion("3.1.1", "A", "Language of Page",
                  "Default human language of page can be programmatically determined"),
    WcagCriterion("3.1.2", "AA", "Language of Parts",
                  "Human language of each passage or phrase can be programmatically determined"),
    WcagCriterion("3.1.3", "AAA", "Unusual Words",
                  "Mechanism is available for identifying specific definitions of unusual words"),
    WcagCriterion("3.1.4", "AAA", "Abbreviations",
                  "Mechanism is available for identifying expanded form of abbreviations"),
    WcagCriterion("3.1.5", "AAA", "Reading Level",
                  "Supplemental content or lower reading level version is available"),
    WcagCriterion("3.1.6", "AAA", "Pronunciation",
                  "Mechanism is available for identifying pronunciation of ambiguous words"),
    WcagCriterion("3.2.1", "A", "On Focus",
                  "Receiving focus does not initiate a change of context"),
    WcagCriterion("3.2.2", "A", "On Input",
                  "Changing the setting of a UI component does not automatically cause a change of context"),
    WcagCriterion("3.2.3", "AA", "Consistent Navigation",
                  "Navigational mechanisms that are repeated are in consistent order"),
    WcagCriterion("3.2.4", "AA", "Consistent Identification",
                  "Components with same functionality are identified consistently"),
    WcagCriterion("3.2.5", "AAA", "Change on Request",
                  "Changes of context are initiated only by user request or can be turned off"),
    WcagCriterion("3.3.1", "A", "Error Identification",
                  "Input errors are automatically detected and described in text"),
    WcagCriterion("3.3.2", "A", "Labels or Instructions",
                  "Labels or instructions are provided when content requires user input"),
    WcagCriterion("3.3.3", "AA", "Error Suggestion",
                  "Suggestions for correcting input errors are provided"),
    WcagCriterion("3.3.4", "AA", "Error Prevention (Legal, Financial, Data)",
                  "Submissions can be reversed, checked, or confirmed for legal/financial/data transactions"),
    WcagCriterion("3.3.5", "AAA", "Help",
                  "Context-sensitive help is available"),
    WcagCriterion("3.3.6", "AAA", "Error Prevention (All)",
                  "Submissions can be reversed, checked, or confirmed for all user input"),
    WcagCriterion("4.1.1", "A", "Parsing",
                  "Content can be reliably parsed by assistive technologies"),
    WcagCriterion("4.1.2", "A", "Name, Role, Value",
                  "Name and role can be programmatically determined for UI components"),
    WcagCriterion("4.1.3", "AA", "Status Messages",
                  "Status messages can be programmatically determined without receiving focus"),
]


def criterion_sort_key(criterion_id: str):
    """Numeric ordering, so 1.4.10 sorts after 1.4.9."""
    return tuple(int(part) for part in criterion_id.split("."))


def criteria_for_level(level: WcagLevel) -> List[WcagCriterion]:
    included = LEVELS_INCLUDED[level]
    return sorted(
        (criterion for criterion in WCAG_CRITERIA if criterion.level in included),
        key=lambda criterion: criterion_sort_key(criterion.id),
    )
