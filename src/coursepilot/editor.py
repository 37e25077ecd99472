"""Draft copy of the module list for structural syllabus edits."""
import copy

from coursepilot.models import Module, Subtopic

NEW_SUBTOPIC = "New Subtopic"
NEW_MODULE = "New Module"


class SyllabusEditor:
    """Edits apply to `draft` only. The committed list stays with its owner and is
    passed in when a draft is (re)cloned from it.
    """

    def __init__(self):
        self.draft: list[Module] = []
        self.editing = False

    def start_edit(self, committed: list[Module]) -> None:
        self.draft = copy.deepcopy(committed)
        self.editing = True

    def cancel_edit(self, committed: list[Module]) -> None:
        """Discard the draft, leaving a fresh clone of `committed` behind."""
        self.draft = copy.deepcopy(committed)
        self.editing = False

    def finish(self, committed: list[Module]) -> None:
        """Leave edit mode after `committed` has been adopted."""
        self.draft = copy.deepcopy(committed)
        self.editing = False

    def _module(self, title: str) -> Module:
        for module in self.draft:
            if module.topic == title:
                return module
        raise KeyError(f"No module titled {title!r}")

    def rename_module(self, old_title: str, new_title: str) -> None:
        self._module(old_title).topic = new_title

    def rename_subtopic(self, module_title: str, index: int, name: str) -> None:
        subtopics = self._module(module_title).subtopics
        if 0 <= index < len(subtopics):
            subtopics[index].name = name

    def add_subtopic(self, module_title: str) -> None:
        self._module(module_title).subtopics.append(Subtopic(name=NEW_SUBTOPIC))

    def delete_subtopic(self, module_title: str, index: int) -> None:
        subtopics = self._module(module_title).subtopics
        if 0 <= index < len(subtopics):
            del subtopics[index]

    def reorder_subtopic(self, module_title: str, index: int, direction: str) -> None:
        """Swap with the neighbour above ("up") or below ("down"); no-op at the ends."""
        subtopics = self._module(module_title).subtopics
        if not 0 <= index < len(subtopics):
            return
        if direction == "up":
            other = index - 1
        elif direction == "down":
            other = index + 1
        else:
            raise ValueError(f"direction must be 'up' or 'down', not {direction!r}")
        if 0 <= other < len(subtopics):
            subtopics[index], subtopics[other] = subtopics[other], subtopics[index]

    def delete_module(self, title: str) -> None:
        self.draft = [m for m in self.draft if m.topic != title]

    def add_module(self) -> None:
        self.draft.append(Module(topic=NEW_MODULE))
