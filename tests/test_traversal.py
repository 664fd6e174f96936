import pytest

from parsing.nodes import Node, Tree
from parsing.traversal import (
    CollectingVisitor,
    CompositeVisitor,
    FindingVisitor,
    NodeVisitor,
    TraversalOptions,
    VisitAction,
    traverse,
)


def leaf(node_type, line):
    return Node(node_type, line, line)


def sample_tree():
    #  program
    #   +- function (1-4)
    #   |   +- loop (2-3)
    #   |   |   +- call (3)
    #   |   +- call (4)
    #   +- call (5)
    loop = Node('loop', 2, 3, children=(leaf('call', 3),))
    function = Node('function', 1, 4, children=(loop, leaf('call', 4)))
    return Node('program', 1, 5, children=(function, leaf('call', 5)))


class RecordingVisitor(NodeVisitor):
    def __init__(self, skip=(), stop_at=None):
        self.events = []
        self.skip = set(skip)
        self.stop_at = stop_at

    def enter_node(self, node, context):
        self.events.append(('enter', node.type, node.start_line))
        if node.type in self.skip:
            return VisitAction.SKIP_CHILDREN
        if self.stop_at == (node.type, node.start_line):
            return VisitAction.STOP
        return None

    def leave_node(self, node, context):
        self.events.append(('leave', node.type, node.start_line))


class TestNode:
    """Test node defaults and the empty tree."""

    def test_default_attributes_are_empty_and_read_only(self):
        first, second = leaf('call', 1), leaf('call', 2)
        assert first.attributes == {}
        assert first.get_attribute('operator', 'none') == 'none'
        with pytest.raises(TypeError):
            first.attributes['operator'] = '.'
        assert second.attributes == {}

    def test_empty_tree_spans_the_source(self):
        tree = Tree.empty("one\ntwo\nthree")
        assert tree.has_errors
        assert tree.node_count == 1
        assert tree.root.end_line == 3
        assert tree.root.text == "one\ntwo\nthree"


class TestTraversal:
    """Test pre-order traversal and visit actions."""

    def test_source_order_with_enter_and_leave(self):
        visitor = RecordingVisitor()
        context = traverse([sample_tree()], visitor)

        entered = [(kind, line) for event, kind, line in visitor.events if event == 'enter']
        assert entered == [('program', 1), ('function', 1), ('loop', 2), ('call', 3), ('call', 4), ('call', 5)]
        assert visitor.events[-1] == ('leave', 'program', 1)
        assert visitor.events.index(('leave', 'loop', 2)) < visitor.events.index(('enter', 'call', 4))
        assert context.nodes_visited == 6
        assert context.max_depth_reached == 3

    def test_skip_children(self):
        visitor = RecordingVisitor(skip={'function'})
        traverse([sample_tree()], visitor)
        entered = [kind for event, kind, _ in visitor.events if event == 'enter']
        assert entered == ['program', 'function', 'call']

    def test_stop(self):
        visitor = RecordingVisitor(stop_at=('call', 3))
        context = traverse([sample_tree()], visitor)
        entered = [(kind, line) for event, kind, line in visitor.events if event == 'enter']
        assert entered[-1] == ('call', 3)
        assert context.stopped

    def test_max_depth(self):
        visitor = RecordingVisitor()
        context = traverse([sample_tree()], visitor, TraversalOptions(max_depth=1))
        entered = [kind for event, kind, _ in visitor.events if event == 'enter']
        assert 'loop' not in entered
        assert context.depth_limit_hits == 1

    def test_skip_and_only_types(self):
        visitor = RecordingVisitor()
        traverse([sample_tree()], visitor, TraversalOptions(skip_types={'loop'}))
        assert ('enter', 'call', 3) not in visitor.events

        visitor = RecordingVisitor()
        traverse([sample_tree()], visitor, TraversalOptions(only_types={'call'}))
        assert {kind for _, kind, _ in visitor.events} == {'call'}
        assert len([event for event in visitor.events if event[0] == 'enter']) == 3


class TestTraversalContext:
    """Test ancestor queries available to rules."""

    def test_ancestor_queries(self):
        seen = {}

        class Probe(NodeVisitor):
            def enter_node(self, node, context):
                if node.type == 'call':
                    seen[node.start_line] = (
                        context.is_inside('loop'),
                        context.count_ancestors('loop', 'function'),
                        [ancestor.type for ancestor in context.ancestors()],
                        context.parent.type,
                        context.depth,
                    )

        traverse([sample_tree()], Probe())

        assert seen[3] == (True, 2, ['loop', 'function', 'program'], 'loop', 3)
        assert seen[4] == (False, 1, ['function', 'program'], 'function', 2)
        assert seen[5] == (False, 0, ['program'], 'program', 1)

    def test_find_ancestor_and_path(self):
        found = {}

        class Probe(NodeVisitor):
            def enter_node(self, node, context):
                if node.type == 'call' and node.start_line == 3:
                    found['function'] = context.find_ancestor_by_type('function')
                    found['class'] = context.find_ancestor_by_type('class')
                    found['path'] = context.path()
                    found['limited'] = context.ancestors(limit=1)

        traverse([sample_tree()], Probe())
        assert found['function'].start_line == 1
        assert found['class'] is None
        assert found['path'] == 'program > function > loop > call'
        assert [node.type for node in found['limited']] == ['loop']


class TestHelperVisitors:
    """Test the reusable visitors."""

    def test_collecting_visitor(self):
        visitor = CollectingVisitor(lambda node: node.type == 'call')
        traverse([sample_tree()], visitor)
        assert [node.start_line for node in visitor.collected] == [3, 4, 5]

    def test_finding_visitor_stops_early(self):
        visitor = FindingVisitor(lambda node: node.type == 'call')
        context = traverse([sample_tree()], visitor)
        assert visitor.found.start_line == 3
        assert context.stopped

    def test_composite_visitor_skips_only_when_all_agree(self):
        skipping = RecordingVisitor(skip={'function'})
        collecting = CollectingVisitor(lambda node: node.type == 'call')
        traverse([sample_tree()], CompositeVisitor([skipping, collecting]))
        assert len(collecting.collected) == 3


class TestNodes:
    """Test generic node helpers."""

    def test_find_all_includes_self(self):
        tree = sample_tree()
        assert len(tree.find_all('call')) == 3
        assert tree.find_all({'program', 'loop'})[0] is tree

    def test_text_and_fields(self):
        source = b'echo $a;'
        name = Node('variable_name', 1, 1, start_byte=5, end_byte=7, field_name='name', source=source)
        statement = Node('echo_statement', 1, 1, start_byte=0, end_byte=8, children=(name,), source=source)
        assert statement.text == 'echo $a;'
        assert statement.child_by_field('name').text == '$a'
        assert statement.first_child_of_type('variable_name') is name
        assert statement.contains_type('variable_name')

    def test_tree_mark_partial(self):
        tree = Tree(sample_tree(), node_count=6)
        partial = tree.mark_partial()
        assert partial.partial and partial.has_errors
        assert not tree.partial
        assert partial.max_line() == 5
