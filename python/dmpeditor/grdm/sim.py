"""
An in-memory simulation of the parts of the GRDM API used by :py:class:`~dmpeditor.grdm.client.GRDMClient`,
for use in testing.

:py:class:`SimGRDMService` can stand in for the ``requests.Session`` given to the client:
it answers requests through the same ``request()`` method, returning objects that carry
the ``requests.Response`` properties the client reads.  Faults (error statuses, rate
limiting, malformed bodies, or raised exceptions) can be injected for requests matching a
URL pattern.
"""
import re, json, hashlib, threading
from datetime import datetime, timezone
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode
from collections.abc import Mapping
from unittest.mock import Mock

SIM_API_BASE_URL = "https://api.sim.rdm/v2"
SIM_FILES_BASE_URL = "https://files.sim.rdm/v1/resources"
SIM_WEB_BASE_URL = "https://sim.rdm"
SIM_TOKEN = "simtoken"
PROVIDER = "osfstorage"

_reasons = { 200: "OK", 201: "Created", 400: "Bad Request", 401: "Unauthorized",
             403: "Forbidden", 404: "Not Found", 409: "Conflict", 429: "Too Many Requests",
             500: "Internal Server Error", 503: "Service Unavailable" }

def make_response(status: int, body=None, url: str=None):
    """
    create a response object with the given status and body.  A body that is not a str or
    bytes is serialized as JSON.
    """
    if body is None:
        body = ""
    if isinstance(body, bytes):
        content = body
    else:
        if not isinstance(body, str):
            body = json.dumps(body)
        content = body.encode('utf-8')
    text = content.decode('utf-8', errors='replace')

    out = Mock()
    out.status_code = status
    out.reason = _reasons.get(status, "Unknown")
    out.url = url
    out.content = content
    out.text = text
    out.json = lambda: json.loads(text)
    return out

def _now():
    return datetime.now(timezone.utc).isoformat()

class SimGRDMService:
    """
    a simulated GRDM service holding projects, folders, and files in memory.

    Each project's storage is rooted at a folder with the ID ``<project_id>:osfstorage``.
    Items added with :py:meth:`add_folder` and :py:meth:`add_file` are addressed by their
    materialized paths (e.g. ``/a/b/``).
    """

    def __init__(self, token: str=SIM_TOKEN, page_size: int=10, user: Mapping=None):
        self.token = token
        self.page_size = page_size
        self.api_base = SIM_API_BASE_URL
        self.files_base = SIM_FILES_BASE_URL
        self.web_base = SIM_WEB_BASE_URL
        self.user = user or {
            "id": "u0001", "full_name": "Taro Yamada", "given_name": "Taro", "family_name": "Yamada",
            "timezone": "Asia/Tokyo", "email": "taro@example.ac.jp",
            "employment": [{ "institution_ja": "Example University", "department_ja": "Informatics" }],
            "social": { "orcid": "0000-0001-2345-6789", "researcherId": "R0001" }
        }
        self.projects = {}
        self.nodes = {}
        self.requests = []
        self.faults = []
        self._lock = threading.Lock()
        self._seq = 0
        self.closed = False

    def _next_id(self, prefix="f"):
        self._seq += 1
        return f"{prefix}{self._seq:05d}"

    # ---- setting up content

    def add_project(self, project_id: str=None, title: str="Project", description: str="",
                    category: str="project") -> str:
        if not project_id:
            project_id = self._next_id("p")
        now = _now()
        self.projects[project_id] = { "id": project_id, "title": title, "description": description,
                                      "category": category, "created": now, "modified": now }
        self.nodes[self.root_id(project_id)] = {
            "id": self.root_id(project_id), "project": project_id, "kind": "folder",
            "name": PROVIDER, "path": "/", "parent": None, "children": [],
            "created": None, "modified": None
        }
        return project_id

    def root_id(self, project_id: str) -> str:
        return f"{project_id}:{PROVIDER}"

    def find(self, project_id: str, path: str) -> Mapping:
        """
        return the stored entry at the given path, or None if it does not exist
        """
        node = self.nodes.get(self.root_id(project_id))
        for seg in [s for s in path.split('/') if s]:
            if node is None or node['kind'] != "folder":
                return None
            node = next((self.nodes[c] for c in node['children']
                              if self.nodes[c]['name'] == seg), None)
        return node

    def _add(self, parent: Mapping, name: str, kind: str, content: bytes=None) -> Mapping:
        now = _now()
        node = { "id": self._next_id(), "project": parent['project'], "kind": kind,
                 "name": name, "path": parent['path'] + name + ("/" if kind == "folder" else ""),
                 "parent": parent['id'], "created": now, "modified": now }
        if kind == "folder":
            node['children'] = []
        else:
            node['content'] = content or b''
        self.nodes[node['id']] = node
        parent['children'].append(node['id'])
        return node

    def add_folder(self, project_id: str, path: str) -> Mapping:
        """
        add a folder at the given path, creating missing parent folders
        """
        node = self.nodes[self.root_id(project_id)]
        for seg in [s for s in path.split('/') if s]:
            found = next((self.nodes[c] for c in node['children']
                               if self.nodes[c]['name'] == seg), None)
            if found is None:
                found = self._add(node, seg, "folder")
            node = found
        return node

    def add_file(self, project_id: str, path: str, content=b'') -> Mapping:
        """
        add a file at the given path, creating missing parent folders
        """
        if isinstance(content, str):
            content = content.encode('utf-8')
        segs = [s for s in path.split('/') if s]
        parent = self.add_folder(project_id, "/".join(segs[:-1]))
        return self._add(parent, segs[-1], "file", content)

    # ---- fault injection and inspection

    def fail(self, pattern: str, status: int=500, count: int=1, method: str=None, body=None,
             exc: Exception=None):
        """
        arrange for the next ``count`` requests whose URL matches the regular expression
        ``pattern`` to fail: either by raising ``exc`` or by responding with the given status
        and body.
        """
        self.faults.append({ "pattern": re.compile(pattern), "status": status, "count": count,
                             "method": method, "body": body, "exc": exc })

    def count_requests(self, method: str=None, pattern: str=None) -> int:
        """
        return the number of requests received that match the given method and URL pattern
        """
        rx = re.compile(pattern) if pattern else None
        return len([r for r in self.requests if (not method or r[0] == method) and
                                                (not rx or rx.search(r[1]))])

    def _fault_for(self, method, url):
        for fault in self.faults:
            if fault['count'] > 0 and (not fault['method'] or fault['method'] == method) and \
               fault['pattern'].search(url):
                fault['count'] -= 1
                return fault
        return None

    # ---- the Session interface

    def close(self):
        self.closed = True

    def request(self, method, url, headers=None, timeout=None, params=None, data=None,
                json=None, **kw):
        """
        handle a request as a ``requests.Session`` would send it
        """
        with self._lock:
            parts = urlsplit(url)
            query = dict(parse_qsl(parts.query))
            if params:
                query.update((k, str(v)) for k, v in params.items())
            self.requests.append((method, url, query))

            fault = self._fault_for(method, url)
            if fault:
                if fault['exc']:
                    raise fault['exc']
                return make_response(fault['status'],
                                     fault['body'] if fault['body'] is not None else
                                     {"errors": [{"detail": "simulated failure"}]}, url)

            if (headers or {}).get("Authorization") != "Bearer " + self.token:
                return make_response(401, {"errors": [{"detail": "Authentication credentials were not provided."}]}, url)

            base = f"{parts.scheme}://{parts.netloc}"
            if url.startswith(self.api_base):
                rel = parts.path[len(urlsplit(self.api_base).path):]
                return self._handle_api(method, [s for s in rel.split('/') if s], query, json, url)
            if url.startswith(self.files_base):
                rel = parts.path[len(urlsplit(self.files_base).path):]
                return self._handle_files(method, [s for s in rel.split('/') if s], query, data, url)
            return make_response(404, {"errors": [{"detail": "Not found."}]}, url)

    # ---- JSON:API rendering

    def _project_json(self, proj):
        return {
            "id": proj['id'], "type": "nodes",
            "attributes": { "title": proj['title'], "description": proj['description'],
                            "category": proj['category'], "date_created": proj['created'],
                            "date_modified": proj['modified'] },
            "links": { "html": f"{self.web_base}/{proj['id']}/",
                       "self": f"{self.api_base}/nodes/{proj['id']}/" }
        }

    def _user_json(self):
        u = self.user
        return {
            "id": u['id'], "type": "users",
            "attributes": dict((k, v) for k, v in u.items() if k != "id"),
            "links": { "html": f"{self.web_base}/{u['id']}/",
                       "profile_image": f"{self.web_base}/static/img/{u['id']}.png",
                       "self": f"{self.api_base}/users/{u['id']}/" }
        }

    def _file_json(self, node):
        pid = node['project']
        isroot = node['parent'] is None
        resource = f"{self.files_base}/{pid}/providers/{PROVIDER}/" + ("" if isroot else node['id'])
        attrs = { "name": node['name'], "kind": node['kind'], "provider": PROVIDER,
                  "path": "/" if isroot else "/" + node['id'] + ("/" if node['kind'] == "folder" else ""),
                  "materialized_path": node['path'], "date_created": node['created'],
                  "date_modified": node['modified'], "last_touched": None }
        out = { "id": node['id'], "type": "files", "attributes": attrs, "links": {} }
        if node['kind'] == "folder":
            attrs['size'] = None
            out['links']['upload'] = resource
            out['links']['new_folder'] = resource + "?kind=folder"
            related = f"{self.api_base}/nodes/{pid}/files/{PROVIDER}/" + ("" if isroot else node['id'] + "/")
            out['relationships'] = { "files": { "links": { "related": { "href": related } } } }
        else:
            attrs['size'] = len(node['content'])
            attrs['extra'] = { "hashes": { "md5": hashlib.md5(node['content']).hexdigest(),
                                           "sha256": hashlib.sha256(node['content']).hexdigest() } }
            out['links']['upload'] = resource
            out['links']['download'] = resource
        return out

    def _page(self, items, url, query):
        size = int(query.get('page[size]', self.page_size))
        page = int(query.get('page', 1))
        start = (page - 1) * size
        links = { "next": None }
        if start + size < len(items):
            parts = urlsplit(url)
            q = { "page": page + 1 }
            if 'page[size]' in query:
                q['page[size]'] = size
            links['next'] = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(q), ""))
        return make_response(200, { "data": items[start:start+size], "links": links,
                                    "meta": { "total": len(items) } }, url)

    # ---- request handlers

    def _handle_api(self, method, segs, query, body, url):
        notfound = make_response(404, {"errors": [{"detail": "Not found."}]}, url)

        if segs == ["users", "me"] and method == "GET":
            return make_response(200, { "data": self._user_json() }, url)

        if segs == ["nodes"]:
            if method == "GET":
                return self._page([self._project_json(p) for p in self.projects.values()], url, query)
            if method == "POST":
                attrs = (body or {}).get('data', {}).get('attributes', {})
                if not attrs.get('title'):
                    return make_response(400, {"errors": [{"detail": "title is required"}]}, url)
                pid = self.add_project(None, attrs['title'], attrs.get('description', ""),
                                       attrs.get('category', "project"))
                return make_response(201, { "data": self._project_json(self.projects[pid]) }, url)

        if len(segs) < 2 or segs[0] != "nodes" or segs[1] not in self.projects or method != "GET":
            return notfound
        pid = segs[1]

        if len(segs) == 2:
            return make_response(200, { "data": self._project_json(self.projects[pid]) }, url)
        if segs[2:] == ["files"]:
            return self._page([self._file_json(self.nodes[self.root_id(pid)])], url, query)
        if len(segs) in (4, 5) and segs[2] == "files" and segs[3] == PROVIDER:
            folder = self.nodes.get(segs[4] if len(segs) == 5 else self.root_id(pid))
            if not folder or folder['project'] != pid or folder['kind'] != "folder":
                return notfound
            return self._page([self._file_json(self.nodes[c]) for c in folder['children']],
                              url, query)
        return notfound

    def _handle_files(self, method, segs, query, data, url):
        notfound = make_response(404, {"message": "Not found"}, url)
        if len(segs) not in (3, 4) or segs[1] != "providers" or segs[2] != PROVIDER or \
           segs[0] not in self.projects:
            return notfound
        pid = segs[0]
        node = self.nodes.get(segs[3] if len(segs) == 4 else self.root_id(pid))
        if not node or node['project'] != pid:
            return notfound

        if method == "GET":
            if node['kind'] != "file":
                return make_response(400, {"message": "Cannot download a folder"}, url)
            return make_response(200, node['content'], url)

        if method != "PUT":
            return make_response(405, {"message": "Method not allowed"}, url)

        if node['kind'] == "file":
            if query.get('name') or query.get('kind') == "folder":
                return make_response(400, {"message": "Not a folder"}, url)
            node['content'] = data or b''
            node['modified'] = _now()
            return make_response(200, { "data": self._file_json(node) }, url)

        name = query.get('name')
        if not name:
            return make_response(400, {"message": "name is required"}, url)
        if any(self.nodes[c]['name'] == name for c in node['children']):
            return make_response(409, {"message": f"{name} already exists"}, url)
        kind = "folder" if query.get('kind') == "folder" else "file"
        created = self._add(node, name, kind, data if kind == "file" else None)
        return make_response(201, { "data": self._file_json(created) }, url)
