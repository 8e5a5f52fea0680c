import asyncio
import unittest as test
from unittest.mock import patch, AsyncMock

from dmpeditor.grdm.client import GRDMClient
from dmpeditor.grdm.sim import SimGRDMService, SIM_API_BASE_URL, SIM_TOKEN
from dmpeditor.filetree import LazyFileTree, FOLDER, FILE, ERROR, FETCHED
from dmpeditor.linking import AssociationIndex

class TestLinkingProjectFiles(test.TestCase):
    """
    browse a linked project's files through the simulated service and link them to records
    """

    def setUp(self):
        self.sim = SimGRDMService()
        self.sim.add_project("proj1", "Proj1")
        self.sim.add_folder("proj1", "/a/b/")
        self.sim.add_file("proj1", "/a/c.txt", "see")
        self.sim.add_project("proj2", "Proj2")
        self.sim.add_file("proj2", "/readme.md", "# Proj2")

        self.client = GRDMClient({ "api_base_url": SIM_API_BASE_URL, "backoff": 0 },
                                 SIM_TOKEN, self.sim)
        self.index = AssociationIndex()
        self.tree = LazyFileTree(self.client, self.index)

    async def link_projects(self, ids):
        self.tree.set_linked_projects(ids, await self.client.linkable_projects())

    def labels(self, node_id):
        return [(c.label, c.type) for c in self.tree.children(node_id)]

    def test_browse_and_link(self):
        async def scenario():
            await self.link_projects(["proj1"])

            await self.tree.expand("proj1")
            self.assertEqual(self.labels("proj1"), [("a", FOLDER)])
            a = self.tree.children("proj1")[0].node_id

            await self.tree.expand(a)
            self.assertEqual(self.labels(a), [("b", FOLDER), ("c.txt", FILE)])

            self.assertTrue(await self.tree.expand_all_under(a))
            self.index.link_folder("R1", a, self.tree)
            return a

        a = asyncio.run(scenario())
        linked = self.index.get_linked_files("R1")
        self.assertEqual(sorted(f.label for f in linked), ["a", "b", "c.txt"])
        c = [f for f in linked if f.label == "c.txt"][0]
        self.assertEqual(c.path, "/a/c.txt")
        self.assertEqual(c.size, 3)
        self.assertEqual(c.project_id, "proj1")
        self.assertIsNotNone(c.md5)

    def test_unlink_project_cascades(self):
        async def scenario():
            await self.link_projects(["proj1", "proj2"])
            await self.tree.expand_all_under("proj1")
            await self.tree.expand_all_under("proj2")

        asyncio.run(scenario())
        a = self.tree.children("proj1")[0].node_id
        c = [n for n in self.tree.flatten(a) if n.label == "c.txt"][0]
        readme = self.tree.children("proj2")[0]
        self.index.link_folder("A", a, self.tree)
        self.index.link_file("B", c)
        self.index.link_file("B", readme)

        self.assertEqual(self.index.would_affect_records("proj1"), {"A", "B"})
        self.tree.set_linked_projects(["proj2"], [])
        self.assertEqual(self.index.get_linked_files("A"), ())
        self.assertEqual([f.label for f in self.index.get_linked_files("B")], ["readme.md"])
        self.assertEqual(self.tree.project_ids, ["proj2"])

    @patch('asyncio.sleep', new_callable=AsyncMock)
    def test_recovery_after_failure(self, sleep):
        # rate limiting below the retry budget is absorbed by the transport
        self.sim.fail(r"/nodes/proj1/files/osfstorage/$", 429, count=4)
        asyncio.run(self.link_projects(["proj1"]))
        asyncio.run(self.tree.expand("proj1"))
        self.assertEqual(self.tree.state("proj1"), FETCHED)
        self.assertEqual(sleep.await_count, 4)

        # a failed folder shows an error that can be retried
        a = self.tree.children("proj1")[0].node_id
        self.sim.fail(r"/files/osfstorage/%s/$" % a, 500)
        asyncio.run(self.tree.expand(a))
        err = self.tree.children(a)
        self.assertEqual([n.type for n in err], [ERROR])
        self.assertEqual(self.tree.failure(a).status, 500)

        asyncio.run(self.tree.retry(err[0].node_id))
        self.assertEqual(self.labels(a), [("b", FOLDER), ("c.txt", FILE)])

if __name__ == '__main__':
    test.main()
