import os, json, asyncio, logging, tempfile
import unittest as test
from unittest.mock import patch

from dmpeditor.base.config import ConfigurationException
from dmpeditor.grdm import client as grdm, DEV_API_BASE_URL, PROD_API_BASE_URL, DEV_ENV_VAR
from dmpeditor.grdm.exceptions import *
from dmpeditor.grdm.sim import SimGRDMService, SIM_API_BASE_URL, SIM_WEB_BASE_URL, SIM_TOKEN

tmpdir = tempfile.TemporaryDirectory(prefix="_test_grdm_client.")
loghdlr = None
rootlog = None
def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    loghdlr = logging.FileHandler(os.path.join(tmpdir.name,"test_grdm.log"))
    loghdlr.setLevel(logging.DEBUG)
    rootlog.addHandler(loghdlr)

def tearDownModule():
    global loghdlr
    if loghdlr:
        if rootlog:
            rootlog.removeHandler(loghdlr)
            loghdlr.flush()
            loghdlr.close()
        loghdlr = None
    tmpdir.cleanup()

config = { "api_base_url": SIM_API_BASE_URL, "web_base_url": SIM_WEB_BASE_URL, "backoff": 0 }

class TestGRDMClientConfig(test.TestCase):

    def test_defaults(self):
        with patch.dict(os.environ, {DEV_ENV_VAR: ""}):
            cli = grdm.GRDMClient()
        self.assertEqual(cli.api_base_url, PROD_API_BASE_URL)
        self.assertEqual(cli.project_prefix, "dmp-project-")
        self.assertEqual(cli.dmp_file_path, "dmp-project-root/dmp.json")
        self.assertEqual(cli.transport.retries, 5)
        self.assertEqual(cli.paths.provider, "osfstorage")
        self.assertIsNone(cli.paths.page_size)

    def test_dev_env(self):
        cli = grdm.GRDMClient({"use_dev_env": True})
        self.assertEqual(cli.api_base_url, DEV_API_BASE_URL)
        with patch.dict(os.environ, {DEV_ENV_VAR: "true"}):
            cli = grdm.GRDMClient()
        self.assertEqual(cli.api_base_url, DEV_API_BASE_URL)

    def test_overrides(self):
        cli = grdm.GRDMClient({"api_base_url": "https://rdm.example.org/api/v2/", "retries": 2,
                               "page_size": "25", "storage_provider": "s3",
                               "project_prefix": "dmp-"})
        self.assertEqual(cli.api_base_url, "https://rdm.example.org/api/v2")
        self.assertEqual(cli.transport.retries, 2)
        self.assertEqual(cli.paths.page_size, 25)
        self.assertEqual(cli.paths.provider, "s3")
        self.assertEqual(cli.project_prefix, "dmp-")

    def test_bad_config(self):
        with self.assertRaises(ConfigurationException):
            grdm.GRDMClient({"api_base_url": "ftp://example.org"})
        with self.assertRaises(ConfigurationException):
            grdm.GRDMClient({"page_size": "many"})

class TestGRDMClient(test.TestCase):

    def setUp(self):
        self.sim = SimGRDMService(page_size=2)
        self.sim.add_project("p1", "Proj1")
        self.sim.add_project("d1", "dmp-project-Plan A")
        self.sim.add_project("p2", "Proj2")
        self.sim.add_folder("p1", "/a/b/")
        self.sim.add_file("p1", "/a/c.txt", "see")
        self.cli = grdm.GRDMClient(config, SIM_TOKEN, self.sim)

    def run_async(self, coro):
        return asyncio.run(coro)

    def test_close(self):
        self.cli.close()
        self.assertTrue(self.sim.closed)

    def test_get_me(self):
        user = self.run_async(self.cli.get_me())
        self.assertEqual(user.full_name, "Taro Yamada")
        self.assertEqual(user.email, "taro@example.ac.jp")

    def test_authenticate(self):
        self.assertTrue(self.run_async(self.cli.authenticate()))
        self.cli = grdm.GRDMClient(config, "badtoken", self.sim)
        self.assertFalse(self.run_async(self.cli.authenticate()))
        with self.assertRaises(AuthenticationFailure):
            self.run_async(self.cli.get_me())

    def test_list_projects(self):
        projs = self.run_async(self.cli.list_projects())
        self.assertEqual([p.id for p in projs], ["p1", "d1", "p2"])
        self.assertEqual(self.run_async(self.cli.list_projects("Proj"))[1].title, "Proj2")
        self.assertEqual([p.id for p in self.run_async(self.cli.list_dmp_projects())], ["d1"])
        self.assertEqual([p.id for p in self.run_async(self.cli.linkable_projects())], ["p1", "p2"])

    def test_get_project_info(self):
        proj = self.run_async(self.cli.get_project_info("p2"))
        self.assertEqual(proj.title, "Proj2")
        with self.assertRaises(RemoteRequestFailed) as cm:
            self.run_async(self.cli.get_project_info("nope"))
        self.assertEqual(cm.exception.status, 404)

    def test_create_project(self):
        proj = self.run_async(self.cli.create_project("Proj3", "more data"))
        self.assertEqual(proj.title, "Proj3")
        self.assertEqual(self.sim.projects[proj.id]['description'], "more data")

        proj = self.run_async(self.cli.create_dmp_project("Plan B"))
        self.assertEqual(proj.title, "dmp-project-Plan B")
        with self.assertRaises(WriteConflict):
            self.run_async(self.cli.create_dmp_project("Plan A"))

    def test_list_children(self):
        kids = self.run_async(self.cli.list_children("p1"))
        self.assertEqual([k.name for k in kids], ["a"])
        kids = self.run_async(self.cli.list_children("p1", kids[0].id))
        self.assertEqual([(k.name, k.kind) for k in kids], [("b", "folder"), ("c.txt", "file")])
        self.assertEqual(kids[1].size, 3)

        self.assertEqual(self.run_async(self.cli.list_children("p1", kids[0].id)), [])

    def test_read_write_file(self):
        content, node = self.run_async(self.cli.read_file("p1", "/a/c.txt"))
        self.assertEqual(content, "see")
        self.assertEqual(node.name, "c.txt")
        content, node = self.run_async(self.cli.read_file("p1", "/a/c.txt", True))
        self.assertEqual(content, b"see")

        with self.assertRaises(PathResolutionFailed):
            self.run_async(self.cli.read_file("p1", "/a/b"))
        with self.assertRaises(PathResolutionFailed):
            self.run_async(self.cli.read_file("p1", "/a/d.txt"))

        self.run_async(self.cli.write_file("p1", "/x/d.txt", "dee"))
        self.assertEqual(self.run_async(self.cli.read_file("p1", "x/d.txt"))[0], "dee")
        with self.assertRaises(WriteConflict):
            self.run_async(self.cli.write_file("p1", "/x/d.txt", "dee"))

    def test_dmp_file(self):
        dmp = { "metadata": { "revisionID": 1, "submitDate": "2024-01-01" },
                "project": { "projectName": "大規模データ解析" }, "dataInfo": [] }
        self.run_async(self.cli.write_dmp_file("d1", dmp))
        self.assertIsNotNone(self.sim.find("d1", "/dmp-project-root/dmp.json"))

        got, node = self.run_async(self.cli.read_dmp_file("d1"))
        self.assertEqual(got, dmp)
        self.assertEqual(node.path, "/dmp-project-root/dmp.json")

        dmp['metadata']['revisionID'] = 2
        self.run_async(self.cli.write_dmp_file("d1", dmp))
        self.assertEqual(self.run_async(self.cli.read_dmp_file("d1"))[0]['metadata']['revisionID'], 2)

        with self.assertRaises(WriteConflict):
            self.run_async(self.cli.write_dmp_file("d1", dmp, overwrite=False))

    def test_read_binary_file(self):
        self.sim.add_file("p1", "/a/blob.bin", b"\xff\xfe\x00bad")
        content, node = self.run_async(self.cli.read_file("p1", "a/blob.bin", True))
        self.assertEqual(content, b"\xff\xfe\x00bad")

        with self.assertRaises(MalformedResponse) as cm:
            self.run_async(self.cli.read_file("p1", "a/blob.bin"))
        self.assertEqual(cm.exception.url, node.content_url)
        self.assertTrue(isinstance(cm.exception.cause, UnicodeDecodeError))

    def test_bad_dmp_file(self):
        self.sim.add_file("d1", "/dmp-project-root/dmp.json", "{not json")
        with self.assertRaises(MalformedResponse):
            self.run_async(self.cli.read_dmp_file("d1"))

        self.sim.add_project("d3", "dmp-project-Plan D")
        self.sim.add_file("d3", "/dmp-project-root/dmp.json", b"\x89PNG\r\n\x1a\n")
        with self.assertRaises(MalformedResponse):
            self.run_async(self.cli.read_dmp_file("d3"))

        self.sim.add_project("d2", "dmp-project-Plan C")
        self.sim.add_file("d2", "/dmp-project-root/dmp.json", "[1, 2]")
        with self.assertRaises(MalformedResponse):
            self.run_async(self.cli.read_dmp_file("d2"))

if __name__ == '__main__':
    test.main()
