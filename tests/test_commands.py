"""
Tests for NotebookCommands: user intents, undo/redo and notifications.
"""

import asyncio
import json
from datetime import datetime

import pytest

from conftest import add_cells
from notebook_session.notebook import DEFAULT_CONTENT, CellStatus, CellType, ExecutionMode
from notebook_session.notifications import Level
from notebook_session.persistence import export_notebook


class TestCellCommands:

    def test_create_cell_activates_and_notifies(self, commands, store, notifier):
        cell = commands.create_cell(CellType.CODE)

        assert store.notebook.cells == [cell]
        assert cell.content == DEFAULT_CONTENT[CellType.CODE]
        assert store.state.active_cell_id == cell.id
        assert notifier.last.message == "Code cell added"

    def test_create_cell_below_target(self, commands, store):
        a, b = add_cells(store, "a", "b")
        cell = commands.create_cell("markdown", target_id=a.id)

        assert store.notebook.cell_ids() == [a.id, cell.id, b.id]
        assert cell.type is CellType.MARKDOWN

    def test_create_cell_above_target(self, commands, store):
        (a,) = add_cells(store, "a")
        cell = commands.create_cell(CellType.RAW, position="above", target_id=a.id)
        assert store.notebook.cell_ids() == [cell.id, a.id]

    def test_created_ids_are_unique(self, commands, store):
        for _ in range(50):
            commands.create_cell()
        ids = store.notebook.cell_ids()
        assert len(set(ids)) == 50

    def test_delete_cell(self, commands, store, notifier):
        a, b = add_cells(store, "a", "b")
        store.set_active_cell(a.id)

        assert commands.delete_cell(a.id) is a
        assert store.notebook.cell_ids() == [b.id]
        assert store.state.active_cell_id is None
        assert notifier.last.message == "Cell deleted"

    def test_update_content_unknown_cell_notifies(self, commands, notifier):
        assert commands.update_content("cell_missing", "x") is None
        assert notifier.last.level == Level.ERROR
        assert notifier.last.message == "Cell cell_missing not found"

    def test_move_cell(self, commands, store):
        a, b = add_cells(store, "a", "b")

        assert commands.move_cell(b.id, "up") is True
        assert store.notebook.cell_ids() == [b.id, a.id]
        assert commands.move_cell(b.id, "up") is False

    def test_toggle_cell_type_replaces_content(self, commands, store, notifier):
        (a,) = add_cells(store, "precious = 1")

        commands.toggle_cell_type(a.id)

        assert a.type is CellType.MARKDOWN
        assert a.content == DEFAULT_CONTENT[CellType.MARKDOWN]
        assert notifier.last.message == "Cell type changed"


class TestUndoRedo:

    def test_nothing_to_undo_or_redo(self, commands, notifier):
        assert commands.undo() is False
        assert notifier.last.message == "Nothing to undo"
        assert commands.redo() is False
        assert notifier.last.message == "Nothing to redo"

    def test_undo_create(self, commands, store, notifier):
        cell = commands.create_cell()

        assert commands.undo() is True
        assert store.notebook.cells == []
        assert notifier.last.message == "Undone"

        assert commands.redo() is True
        assert store.notebook.cell_ids() == [cell.id]
        assert notifier.last.message == "Redone"

    def test_undo_delete_restores_position(self, commands, store):
        a, b, c = add_cells(store, "a", "b", "c")
        commands.delete_cell(b.id)

        commands.undo()

        assert store.notebook.cell_ids() == [a.id, b.id, c.id]

    def test_typing_coalesces_into_one_edit(self, commands, store):
        (a,) = add_cells(store, "")
        for text in ("p", "pr", "pri", "prin", "print"):
            commands.update_content(a.id, text)

        commands.undo()
        assert a.content == ""
        commands.redo()
        assert a.content == "print"

    def test_focus_change_splits_typing(self, commands, store):
        a, b = add_cells(store, "", "")
        commands.update_content(a.id, "one")
        commands.set_active_cell(b.id)
        commands.set_active_cell(a.id)
        commands.update_content(a.id, "one two")

        commands.undo()
        assert a.content == "one"

    def test_undo_move(self, commands, store):
        a, b = add_cells(store, "a", "b")
        commands.move_cell(a.id, "down")
        commands.undo()
        assert store.notebook.cell_ids() == [a.id, b.id]

    def test_undo_toggle_restores_content(self, commands, store):
        (a,) = add_cells(store, "precious = 1")
        commands.toggle_cell_type(a.id)

        commands.undo()

        assert a.type is CellType.CODE
        assert a.content == "precious = 1"

    def test_new_edit_clears_redo(self, commands, store, notifier):
        commands.create_cell()
        commands.undo()
        commands.create_cell()

        assert commands.redo() is False
        assert len(store.notebook.cells) == 1


class TestExecutionCommands:

    async def test_execute_cell(self, commands, store):
        (a,) = add_cells(store, "x = 1")
        settled = await commands.execute_cell(a.id)
        assert settled.status == CellStatus.SUCCESS

    async def test_execute_all_refused_while_running(self, commands, store, executor, notifier):
        executor.delays = {"slow = 1": 5}
        (slow,) = add_cells(store, "slow = 1")
        task = asyncio.create_task(commands.execute_cell(slow.id))
        await asyncio.sleep(0.01)

        assert await commands.execute_all() == []
        assert notifier.last.message == "Execution already in progress"

        commands.interrupt()
        await task

    async def test_clear_all_outputs(self, commands, store, notifier):
        (a,) = add_cells(store, "x = 1")
        await commands.execute_all()

        commands.clear_all_outputs()

        assert a.output is None
        assert store.state.execution_count == 0
        assert notifier.last.message == "All outputs cleared"

    async def test_restart_and_shutdown(self, commands, store, executor, notifier):
        await commands.restart()
        assert executor.resets == 1
        assert notifier.last.message == "Kernel restarted"

        await commands.shutdown()
        assert store.current_kernel is None
        assert notifier.last.message == "Kernel shutdown"

    async def test_run_selected(self, commands, store, executor):
        a, b = add_cells(store, "a = 1", "b = 2")
        commands.toggle_selection(b.id)

        await commands.run_selected()

        assert executor.calls == ["b = 2"]


class TestNavigation:

    def test_focus_next_and_previous(self, commands, store):
        a, b, c = add_cells(store, "a", "b", "c")

        assert commands.focus_next() == a.id
        assert commands.focus_next() == b.id
        assert commands.focus_next() == c.id
        assert commands.focus_next() == c.id
        assert commands.focus_previous() == b.id
        assert commands.focus_previous() == a.id
        assert commands.focus_previous() == a.id

    def test_select_all(self, commands, store):
        cells = add_cells(store, "a", "b")
        commands.select_all()
        assert store.state.selected_cell_ids == {c.id for c in cells}


class TestClipboard:

    def test_copy_paste_gets_fresh_id(self, commands, store, notifier):
        (a,) = add_cells(store, "x = 1")

        assert commands.copy_cell(a.id) is True
        pasted = commands.paste_cell()

        assert pasted.id != a.id
        assert pasted.content == "x = 1"
        assert store.notebook.cell_ids() == [a.id, pasted.id]
        assert store.state.active_cell_id == pasted.id
        assert notifier.last.message == "Cell pasted"

    def test_repeated_paste_keeps_ids_unique(self, commands, store):
        (a,) = add_cells(store, "x = 1")
        commands.copy_cell(a.id)
        for _ in range(10):
            commands.paste_cell()

        ids = store.notebook.cell_ids()
        assert len(ids) == 11
        assert len(set(ids)) == 11

    def test_cut_then_paste(self, commands, store):
        a, b = add_cells(store, "a", "b")
        commands.cut_cell(a.id)
        pasted = commands.paste_cell()

        assert store.notebook.cell_ids() == [b.id, pasted.id]
        assert pasted.content == "a"

    def test_copy_unknown_cell(self, commands, notifier):
        assert commands.copy_cell("cell_missing") is False
        assert notifier.last.message == "Cell not found"

    def test_paste_empty_clipboard(self, commands, notifier):
        assert commands.paste_cell() is None
        assert notifier.last.message == "Clipboard is empty"

    @pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"type": "video"}'])
    def test_paste_invalid_data(self, commands, store, notifier, text):
        commands.clipboard.write(text)

        assert commands.paste_cell() is None
        assert store.notebook.cells == []
        assert notifier.last.message == "Invalid cell data in clipboard"

    def test_undo_paste(self, commands, store):
        (a,) = add_cells(store, "a")
        commands.copy_cell(a.id)
        commands.paste_cell()

        commands.undo()

        assert store.notebook.cell_ids() == [a.id]


class TestMergeSplit:

    def test_merge_requires_two_cells(self, commands, store, notifier):
        (a,) = add_cells(store, "a")
        store.select_cell(a.id)

        assert commands.merge_cells() is None
        assert notifier.last.message == "Select at least 2 cells to merge"

    def test_merge_in_document_order(self, commands, store):
        a, b, c = add_cells(store, "first", "second", "third")
        store.select_cell(c.id)
        store.select_cell(a.id)

        merged = commands.merge_cells()

        assert merged.id == a.id
        assert store.get_cell(a.id) is merged
        assert merged.content == "first\n\nthird"
        assert store.notebook.cell_ids() == [a.id, b.id]
        assert store.state.selected_cell_ids == {a.id}
        assert store.state.active_cell_id == a.id

    def test_merge_skips_empty_content(self, commands, store):
        a, b, c = add_cells(store, "one", "   ", "two")
        commands.select_all()

        commands.merge_cells()

        assert store.get_cell(a.id).content == "one\n\ntwo"
        assert store.notebook.cell_ids() == [a.id]

    def test_undo_merge(self, commands, store):
        a, b = add_cells(store, "one", "two")
        commands.select_all()
        commands.merge_cells()

        commands.undo()

        assert store.notebook.cell_ids() == [a.id, b.id]
        assert [c.content for c in store.notebook.cells] == ["one", "two"]

        commands.redo()
        assert store.notebook.cell_ids() == [a.id]
        assert store.notebook.cells[0].content == "one\n\ntwo"

    def test_split_cell(self, commands, store):
        (a,) = add_cells(store, "l1\nl2\nl3\nl4")

        new_cell = commands.split_cell(a.id)

        assert store.get_cell(a.id).content == "l1\nl2"
        assert new_cell.content == "l3\nl4"
        assert new_cell.type == a.type
        assert store.notebook.cell_ids() == [a.id, new_cell.id]
        assert store.state.active_cell_id == new_cell.id

    def test_split_odd_line_count(self, commands, store):
        (a,) = add_cells(store, "l1\nl2\nl3")
        new_cell = commands.split_cell(a.id)

        assert store.get_cell(a.id).content == "l1"
        assert new_cell.content == "l2\nl3"

    def test_split_single_line_rejected(self, commands, store, notifier):
        (a,) = add_cells(store, "only one")

        assert commands.split_cell(a.id) is None
        assert notifier.last.message == "Cell must have at least 2 lines to split"
        assert len(store.notebook.cells) == 1

    def test_split_empty_rejected(self, commands, store, notifier):
        (a,) = add_cells(store, "")
        assert commands.split_cell(a.id) is None
        assert notifier.last.message == "Cell is empty"

    def test_undo_split(self, commands, store):
        (a,) = add_cells(store, "l1\nl2")
        commands.split_cell(a.id)

        commands.undo()

        assert store.notebook.cell_ids() == [a.id]
        assert store.notebook.cells[0].content == "l1\nl2"


class TestFindReplace:

    def test_find_is_case_insensitive(self, commands, store, notifier):
        a, b, c = add_cells(store, "Foo foo", "bar", "FOO")

        matches = commands.find("foo")

        assert [m["cell_id"] for m in matches] == [a.id, c.id]
        assert matches[0]["count"] == 2
        assert notifier.last.message == "Found 3 match(es)"

    def test_find_nothing(self, commands, store, notifier):
        add_cells(store, "abc")
        assert commands.find("xyz") == []
        assert notifier.last.message == "No matches found"

    def test_replace_all(self, commands, store):
        a, b = add_cells(store, "x = Value", "value + value")

        assert commands.replace("value", "v") == 3
        assert store.get_cell(a.id).content == "x = v"
        assert store.get_cell(b.id).content == "v + v"

    def test_replace_first_only(self, commands, store):
        a, b = add_cells(store, "a a", "a")

        assert commands.replace("a", "b", replace_all=False) == 1
        assert store.get_cell(a.id).content == "b a"
        assert b.content == "a"

    def test_replacement_is_literal(self, commands, store):
        (a,) = add_cells(store, "path")
        commands.replace("path", r"C:\new")
        assert store.get_cell(a.id).content == r"C:\new"

    def test_replace_is_one_undo_step(self, commands, store):
        a, b = add_cells(store, "foo", "foo")
        commands.replace("foo", "bar")

        commands.undo()

        assert [c.content for c in store.notebook.cells] == ["foo", "foo"]

    def test_replace_without_matches(self, commands, store, notifier):
        add_cells(store, "abc")
        assert commands.replace("xyz", "q") == 0
        assert notifier.last.message == "No matches found to replace"


class TestFilesAndTemplates:

    async def test_save_without_target(self, commands, notifier):
        assert await commands.save() is False
        assert notifier.last.level == Level.WARNING

    async def test_save_success(self, commands, store, notifier):
        saved = []
        commands.save_callback = saved.append

        assert await commands.save() is True
        assert saved == [store.notebook]
        assert notifier.last.message == "Notebook saved"

    async def test_save_failure(self, commands, notifier):
        def broken(notebook):
            raise OSError("read-only")

        commands.save_callback = broken

        assert await commands.save() is False
        assert notifier.last.message == "Failed to save notebook"

    def test_export_import_round_trip(self, commands, store, notifier):
        add_cells(store, "x = 1", "y = 2")
        text = commands.export_notebook()
        before = store.notebook

        store.set_notebook(before.model_copy(update={"cells": []}))
        assert commands.import_notebook(text) is True

        assert store.notebook == before
        assert notifier.last.message == "Notebook imported"

    def test_import_failure_leaves_state(self, commands, store, notifier):
        (a,) = add_cells(store, "keep")
        notebook = store.notebook

        assert commands.import_notebook('{"cells": "nope"}') is False

        assert store.notebook is notebook
        assert store.notebook.cell_ids() == [a.id]
        assert notifier.last.level == Level.ERROR
        assert notifier.last.message.startswith("Failed to import notebook: ")

    def test_import_clears_history(self, commands, store):
        commands.create_cell()
        text = export_notebook(store.notebook)
        commands.import_notebook(text)

        assert not commands.history.can_undo

    def test_select_template(self, commands, store, notifier):
        assert commands.select_template("eda") is True

        assert store.notebook.name == "Exploratory Data Analysis"
        assert store.notebook.tags == ["data-analysis"]
        assert len(store.notebook.cells) == 4
        assert notifier.last.message == 'Template "Exploratory Data Analysis" loaded'

    def test_unknown_template(self, commands, store, notifier):
        notebook = store.notebook
        assert commands.select_template("nope") is False
        assert store.notebook is notebook
        assert notifier.last.message == "Unknown template: nope"

    def test_rename_and_settings(self, commands, store, notifier):
        commands.rename_notebook("Renamed")
        assert commands.update_settings(execution_mode="parallel") is True

        assert store.notebook.name == "Renamed"
        assert store.notebook.settings.execution_mode is ExecutionMode.PARALLEL

        assert commands.update_settings(execution_mode="sideways") is False
        assert notifier.last.level == Level.ERROR
        assert store.notebook.settings.execution_mode is ExecutionMode.PARALLEL


class TestDispatch:

    async def test_dispatch_sync_and_async(self, commands, store):
        cell = await commands.dispatch("create_cell", type="code")
        await commands.dispatch("update_content", cell_id=cell.id, content="x = 1")
        settled = await commands.dispatch("execute_cell", cell_id=cell.id)

        assert settled.status == CellStatus.SUCCESS
        assert store.current_kernel.variables == {"x": "1"}

    async def test_dispatch_unknown_intent(self, commands, notifier):
        assert await commands.dispatch("levitate") is None
        assert notifier.last.message == "Unknown command: levitate"

    async def test_clipboard_holds_json(self, commands, store):
        (a,) = add_cells(store, "x = 1")
        await commands.dispatch("copy_cell", cell_id=a.id)
        assert json.loads(commands.clipboard.read())["id"] == a.id


class TestBadArguments:

    async def test_unknown_cell_type(self, commands, store, notifier):
        assert await commands.dispatch("create_cell", type="bogus") is None
        assert store.notebook.cells == []
        assert notifier.last.level == Level.ERROR
        assert notifier.last.message == "Unknown cell type: bogus"

    async def test_unknown_position(self, commands, store, notifier):
        assert await commands.dispatch("create_cell", position="sideways") is None
        assert store.notebook.cells == []
        assert notifier.last.message == "Unknown position: sideways"

    async def test_unknown_direction(self, commands, store, notifier):
        a, b = add_cells(store, "a", "b")

        assert await commands.dispatch("move_cell", cell_id=a.id, direction="sideways") is None
        assert store.notebook.cell_ids() == [a.id, b.id]
        assert notifier.last.message == "Unknown direction: sideways"
        assert commands.undo() is False

    async def test_missing_and_unexpected_arguments(self, commands, notifier):
        assert await commands.dispatch("move_cell", cell_id="cell_x") is None
        assert notifier.last.message == "Invalid arguments for move_cell"

        assert await commands.dispatch("select_all", everything=True) is None
        assert notifier.last.message == "Invalid arguments for select_all"

    def test_delete_keeps_focus_on_other_cell(self, commands, store):
        a, b = add_cells(store, "a", "b")
        store.set_active_cell(a.id)

        commands.delete_cell(b.id)

        assert store.state.active_cell_id == a.id


class TestStoreMutations:
    """Bulk edits replace the cell list through the store in one action."""

    def _record(self, store):
        changes = []
        store.subscribe(lambda state, change: changes.append(change))
        return changes

    def test_merge_is_one_store_action(self, commands, store):
        a, b = add_cells(store, "first", "second")
        commands.select_all()
        changes = self._record(store)

        commands.merge_cells()

        assert a.content == "first"
        assert [c.action for c in changes if c.kind == "notebook"] == ["merge_cells"]

    def test_split_is_one_store_action(self, commands, store):
        (a,) = add_cells(store, "l1\nl2")
        changes = self._record(store)

        commands.split_cell(a.id)

        assert a.content == "l1\nl2"
        assert [c.action for c in changes if c.kind == "notebook"] == ["split_cell"]

    def test_replace_is_one_store_action(self, commands, store):
        a, b = add_cells(store, "foo", "foo")
        changes = self._record(store)

        commands.replace("foo", "bar")

        assert a.content == b.content == "foo"
        assert [c.action for c in changes if c.kind == "notebook"] == ["replace"]


class TestUndoAfterClear:
    """Clearing outputs cannot be undone by undoing an earlier edit."""

    async def test_undo_merge_after_clear(self, commands, store):
        a, b = add_cells(store, "a = 1", "b = 2")
        await commands.execute_all()
        commands.select_all()
        commands.merge_cells()
        commands.clear_all_outputs()

        commands.undo()

        cells = store.notebook.cells
        assert [c.id for c in cells] == [a.id, b.id]
        assert [(c.status, c.execution_count) for c in cells] == [(CellStatus.IDLE, None)] * 2
        assert all(c.output is None for c in cells)
        assert store.state.execution_count == 0

        settled = await commands.execute_cell(a.id)
        assert settled.execution_count == 1

    async def test_undo_delete_after_clear(self, commands, store):
        a, b = add_cells(store, "a = 1", "b = 2")
        await commands.execute_all()
        commands.delete_cell(b.id)
        commands.clear_all_outputs()

        commands.undo()

        restored = store.get_cell(b.id)
        assert restored.status == CellStatus.IDLE
        assert restored.output is None
        assert restored.execution_count is None

    async def test_undo_merge_keeps_results_without_clear(self, commands, store):
        a, b = add_cells(store, "a = 1", "b = 2")
        await commands.execute_all()
        commands.select_all()
        commands.merge_cells()

        commands.undo()

        counts = [c.execution_count for c in store.notebook.cells]
        assert counts == [1, 2]
        assert store.get_cell(b.id).output.output == "ran b = 2"

    async def test_undo_replace_keeps_newer_results(self, commands, store):
        (a,) = add_cells(store, "x = 1")
        commands.replace("1", "2")
        await commands.execute_cell(a.id)

        commands.undo()

        cell = store.get_cell(a.id)
        assert cell.content == "x = 1"
        assert cell.status == CellStatus.SUCCESS
        assert cell.execution_count == 1


class TestCellAnnotations:

    def test_rename_cell_title(self, commands, store):
        (a,) = add_cells(store, "x = 1")
        store.notebook.updated_at = datetime(2000, 1, 1)

        commands.rename_cell_title(a.id, "Load data")

        assert store.get_cell(a.id).metadata["title"] == "Load data"
        assert store.notebook.updated_at > datetime(2000, 1, 1)

        commands.undo()
        assert "title" not in store.get_cell(a.id).metadata

    def test_add_comment(self, commands, store, notifier):
        (a,) = add_cells(store, "x = 1")

        first = commands.add_comment(a.id, "check this")
        second = commands.add_comment(a.id, "looks fine", author="reviewer")

        comments = store.get_cell(a.id).metadata["comments"]
        assert [c["content"] for c in comments] == ["check this", "looks fine"]
        assert comments[0]["author"] == "Current User"
        assert comments[1]["author"] == "reviewer"
        assert first["id"] != second["id"]
        assert notifier.last.message == "Comment added"

        commands.undo()
        assert [c["content"] for c in store.get_cell(a.id).metadata["comments"]] == ["check this"]

    def test_empty_comment_rejected(self, commands, store, notifier):
        (a,) = add_cells(store, "x = 1")

        assert commands.add_comment(a.id, "   ") is None
        assert "comments" not in a.metadata
        assert notifier.last.message == "Comment text is required"

    def test_add_tag(self, commands, store, notifier):
        (a,) = add_cells(store, "x = 1")

        commands.add_tag(a.id, "etl")
        commands.add_tag(a.id, " slow ")

        assert a.metadata["tags"] == ["etl", "slow"]
        assert notifier.last.message == "Tag added"

        commands.undo()
        assert a.metadata["tags"] == ["etl"]
        commands.redo()
        assert a.metadata["tags"] == ["etl", "slow"]

    def test_annotation_on_unknown_cell(self, commands, notifier):
        assert commands.add_tag("cell_missing", "x") is None
        assert notifier.last.message == "Cell cell_missing not found"

    async def test_sql_settings(self, commands, store):
        (q,) = add_cells(store, "SELECT 1", cell_type=CellType.SQL)

        await commands.dispatch("set_sql_variable_name", cell_id=q.id, variable_name="df")
        await commands.dispatch("set_sql_connection", cell_id=q.id, connection="warehouse")

        assert q.metadata == {"sqlVariableName": "df", "sqlConnection": "warehouse"}

        commands.undo()
        assert "sqlConnection" not in q.metadata

    def test_invalid_sql_variable_name(self, commands, store, notifier):
        (q,) = add_cells(store, "SELECT 1", cell_type=CellType.SQL)

        assert commands.set_sql_variable_name(q.id, "not a name") is None
        assert "sqlVariableName" not in q.metadata
        assert notifier.last.message == "Invalid variable name: not a name"
