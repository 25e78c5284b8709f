# encoding: utf-8
import os, pdb, io, shutil, tempfile, logging, hashlib, zipfile, tarfile
import unittest as test
from datetime import date

import wormbag.constants as cnsts
from wormbag.fill import Filler
from wormbag.access.bag import Bag
from wormbag.access.exceptions import (BagError, ConfigurationError,
                                       PathConflictError)

logging.basicConfig(filename='test.log', level=logging.DEBUG)

class FailingSource(object):
    # a stream that breaks part way through
    def __init__(self):
        self.calls = 0
    def read(self, size=-1):
        self.calls += 1
        if self.calls > 1:
            raise IOError("connection lost")
        return b"partial"

class TestFiller(test.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()
        self.bagdir = os.path.join(self.tempdir, "newbag")

    def tearDown(self):
        shutil.rmtree(self.tempdir)

    def read_lines(self, relpath):
        with open(os.path.join(self.bagdir, relpath)) as fd:
            return [l.rstrip("\n") for l in fd]

    def test_ctor(self):
        filler = Filler(self.bagdir)
        self.assertEqual(filler.base, self.bagdir)
        self.assertEqual(filler.algorithms, ("sha512",))
        self.assertFalse(filler.is_finalized)
        self.assertTrue(os.path.isdir(os.path.join(self.bagdir, "data")))

        with self.assertRaises(ConfigurationError):
            Filler(os.path.join(self.tempdir, "b1"), ["goober"])
        with self.assertRaises(ConfigurationError):
            Filler(os.path.join(self.tempdir, "b2"), encoding="klingon")
        with self.assertRaises(ConfigurationError):
            Filler(os.path.join(self.tempdir, "b3"), eol="mac")

    def test_nonempty_base(self):
        os.makedirs(self.bagdir)
        with open(os.path.join(self.bagdir, "junk.txt"), 'w') as fd:
            fd.write("junk")
        with self.assertRaises(PathConflictError):
            Filler(self.bagdir)

    def test_single_sha512_payload(self):
        data = os.urandom(13000)
        filler = Filler(self.bagdir, ["SHA-512"])
        filler.payload("bigfile", io.BytesIO(data))
        self.assertEqual(filler.to_directory(), self.bagdir)

        manifest = self.read_lines("manifest-sha512.txt")
        self.assertEqual(manifest,
                         [hashlib.sha512(data).hexdigest() + " data/bigfile"])
        tags = self.read_lines("tagmanifest-sha512.txt")
        self.assertEqual(len(tags), 3)
        self.assertEqual(sorted(l.split()[1] for l in tags),
                         ["bag-info.txt", "bagit.txt", "manifest-sha512.txt"])

        bag = Bag(self.bagdir)
        self.assertEqual(len(bag.payload_manifest()), 1)
        self.assertEqual(bag.metadata("Payload-Oxum"), ["13000.1"])
        self.assertEqual(bag.metadata("Bag-Size"), ["13 KB"])
        self.assertEqual(bag.metadata("Bagging-Date"),
                         [date.today().isoformat()])
        self.assertEqual(bag.completeness_status(), cnsts.SUCCESS)
        self.assertEqual(bag.validation_status(), cnsts.SUCCESS)

    def test_declaration(self):
        Filler(self.bagdir, eol=cnsts.EolRule.UNIX).to_directory()
        with open(os.path.join(self.bagdir, "bagit.txt"), 'rb') as fd:
            self.assertEqual(fd.read(), b"BagIt-Version: 1.0\n"
                                        b"Tag-File-Character-Encoding: UTF-8\n")

    def test_windows_eol(self):
        filler = Filler(self.bagdir, eol=cnsts.EolRule.WINDOWS)
        filler.payload("raw.txt", io.BytesIO(b"a\nb\n"))
        filler.metadata("Contact-Name", "Jane Doe")
        filler.to_directory()

        with open(os.path.join(self.bagdir, "bagit.txt"), 'rb') as fd:
            self.assertEqual(fd.read(), b"BagIt-Version: 1.0\r\n"
                                        b"Tag-File-Character-Encoding: UTF-8\r\n")
        for name in ("bag-info.txt", "manifest-sha512.txt",
                     "tagmanifest-sha512.txt"):
            with open(os.path.join(self.bagdir, name), 'rb') as fd:
                content = fd.read()
            self.assertEqual(content.count(b"\n"), content.count(b"\r\n"))
        with open(os.path.join(self.bagdir, "data", "raw.txt"), 'rb') as fd:
            self.assertEqual(fd.read(), b"a\nb\n")
        self.assertTrue(Bag(self.bagdir).is_valid())

    def test_multiple_algorithms(self):
        filler = Filler(self.bagdir, ["sha256", "md5"])
        filler.payload("a.txt", io.BytesIO(b"aaa"))
        filler.tag("notes/b.txt", io.BytesIO(b"bbb"))
        filler.to_directory()

        for alg in ("sha256", "md5"):
            self.assertEqual(self.read_lines("manifest-{0}.txt".format(alg)),
                             [hashlib.new(alg, b"aaa").hexdigest() +
                              " data/a.txt"])
            tags = dict(reversed(l.split(" ", 1)) for l in
                        self.read_lines("tagmanifest-{0}.txt".format(alg)))
            self.assertEqual(tags["notes/b.txt"],
                             hashlib.new(alg, b"bbb").hexdigest())
            self.assertIn("manifest-md5.txt", tags)
            self.assertIn("manifest-sha256.txt", tags)
        self.assertTrue(Bag(self.bagdir).is_valid())

    def test_payload_from_file(self):
        src = os.path.join(self.tempdir, "source.txt")
        with open(src, 'w') as fd:
            fd.write("from a file")
        os.utime(src, (1000000000, 1000000000))

        filler = Filler(self.bagdir)
        filler.payload(src)
        filler.payload("copies/again.txt", src)
        filler.to_directory()

        path = os.path.join(self.bagdir, "data", "source.txt")
        self.assertTrue(os.path.isfile(path))
        self.assertEqual(int(os.stat(path).st_mtime), 1000000000)
        path = os.path.join(self.bagdir, "data", "copies", "again.txt")
        self.assertEqual(int(os.stat(path).st_mtime), 1000000000)
        self.assertTrue(Bag(self.bagdir).is_valid())

    def test_duplicates(self):
        filler = Filler(self.bagdir)
        filler.payload("a.txt", io.BytesIO(b"first"))
        with self.assertRaises(PathConflictError):
            filler.payload("a.txt", io.BytesIO(b"second"))
        with self.assertRaises(PathConflictError):
            filler.payload("./a.txt", io.BytesIO(b"second"))
        with self.assertRaises(PathConflictError):
            filler.payload_stream("a.txt")
        with self.assertRaises(PathConflictError):
            filler.payload_ref("a.txt", io.BytesIO(b"x"), "http://x.org/a")

        filler.tag("about.txt", io.BytesIO(b"about"))
        with self.assertRaises(PathConflictError):
            filler.tag_stream("about.txt")
        with self.assertRaises(PathConflictError):
            filler.property("about.txt", "Name", "value")

        filler.to_directory()
        with open(os.path.join(self.bagdir, "data", "a.txt"), 'rb') as fd:
            self.assertEqual(fd.read(), b"first")
        bag = Bag(self.bagdir)
        self.assertEqual(len(bag.payload_manifest()), 1)
        self.assertTrue(bag.is_valid())

    def test_reserved_tags(self):
        filler = Filler(self.bagdir, ["sha256"])
        for name in ("bagit.txt", "fetch.txt", "bag-info.txt",
                     "manifest-sha256.txt", "tagmanifest-md5.txt"):
            with self.assertRaises(PathConflictError):
                filler.tag(name, io.BytesIO(b"x"))
        with self.assertRaises(PathConflictError):
            filler.tag_stream("manifest-md5.txt")
        with self.assertRaises(PathConflictError):
            filler.property("bagit.txt", "BagIt-Version", "0.97")
        with self.assertRaises(ConfigurationError):
            filler.tag("data/sneaky.txt", io.BytesIO(b"x"))
        with self.assertRaises(ConfigurationError):
            filler.tag("../outside.txt", io.BytesIO(b"x"))

        # subdirectories may hold files with generated-looking names
        filler.tag("extra/manifest-md5.txt", io.BytesIO(b"x"))
        self.assertTrue(Bag(filler.to_directory()).is_valid())

    def test_reserved_property_files(self):
        filler = Filler(self.bagdir, ["sha256"])
        filler.payload_ref("remote.txt", io.BytesIO(b"remote"),
                           "http://example.org/remote.txt")
        for name in ("fetch.txt", "manifest-sha256.txt",
                     "tagmanifest-sha256.txt", "bagit.txt"):
            with self.assertRaises(PathConflictError):
                filler.property(name, "Injected", "value")
        filler.tag("about.txt", io.BytesIO(b"about"))
        with self.assertRaises(PathConflictError):
            filler.property("about.txt", "Injected", "value")
        with self.assertRaises(ConfigurationError):
            filler.property("data/info.txt", "Injected", "value")
        filler.to_directory()

        self.assertEqual(self.read_lines("fetch.txt"),
                         ["http://example.org/remote.txt 6 data/remote.txt"])
        self.assertEqual(list(Bag(self.bagdir).payload_refs().keys()),
                         ["data/remote.txt"])

    def test_bad_properties(self):
        filler = Filler(self.bagdir, ["sha256"])
        for value in ("line one\nline two", "line one\r\nline two", "cr\r"):
            with self.assertRaises(ConfigurationError):
                filler.metadata("Description", value)
        for name in ("", " Indented", "Has:Colon", "Two\nLines"):
            with self.assertRaises(ConfigurationError):
                filler.metadata(name, "value")
        filler.metadata("Description", "line one")
        filler.to_directory()

        bag = Bag(self.bagdir)
        self.assertEqual(bag.metadata("Description"), ["line one"])
        self.assertTrue(bag.is_valid())

    def test_metadata_round_trip(self):
        longname = "X" * 85
        filler = Filler(self.bagdir, ["sha256"])
        filler.metadata(longname, "v")
        filler.metadata("Note", "  indented")
        filler.metadata("Trailing", "spaced  ")
        filler.metadata("Empty", "")
        filler.to_directory()

        bag = Bag(self.bagdir)
        self.assertEqual(bag.metadata(longname), ["v"])
        self.assertEqual(bag.metadata("Note"), ["  indented"])
        self.assertEqual(bag.metadata("Trailing"), ["spaced  "])
        self.assertEqual(bag.metadata("Empty"), [""])
        self.assertTrue(bag.is_valid())

    def test_payload_stream(self):
        filler = Filler(self.bagdir)
        out = filler.payload_stream("streamed/one.bin")
        out.write(b"one")
        self.assertEqual(filler.manifest(), [])
        out.close()
        out.close()
        self.assertEqual(filler.manifest(),
                         [hashlib.sha512(b"one").hexdigest() +
                          " data/streamed/one.bin"])

        with filler.payload_stream("two.bin") as out:
            out.write(b"two")
        self.assertEqual(len(filler.manifest("SHA-512")), 2)
        with self.assertRaises(ConfigurationError):
            filler.manifest("md5")

        # left open; closed when finalized
        out = filler.payload_stream("three.bin")
        out.write(b"three")
        ts = filler.tag_stream("tagged.txt")
        ts.write(b"tag")
        filler.to_directory()
        self.assertTrue(out.closed)
        self.assertTrue(ts.closed)

        bag = Bag(self.bagdir)
        self.assertEqual(len(bag.payload_manifest()), 3)
        self.assertIn("tagged.txt", bag.tag_manifest())
        self.assertEqual(bag.metadata("Payload-Oxum"), ["11.3"])
        self.assertTrue(bag.is_valid())

    def test_interrupted_copy(self):
        filler = Filler(self.bagdir)
        with self.assertRaises(IOError):
            filler.payload("broken.bin", FailingSource())
        self.assertEqual(filler.manifest(), [])
        filler.to_directory()

        # the partial file is present but unrecorded
        self.assertTrue(os.path.exists(os.path.join(self.bagdir, "data",
                                                    "broken.bin")))
        self.assertEqual(Bag(self.bagdir).completeness_status(),
                         cnsts.PAYLOAD_COUNT_MISMATCH)

    def test_metadata(self):
        longval = "A rather long description that will need to be folded " * 4
        filler = Filler(self.bagdir)
        filler.metadata("Contact-Name", "Jane Doe")
        filler.metadata("External-Description", longval)
        filler.metadata("Contact-Name", "John Doe")
        filler.metadata("Bag-Count", 1)
        filler.property("other-info.txt", "Color", "blue")
        filler.to_directory()

        for line in self.read_lines("bag-info.txt"):
            self.assertLessEqual(len(line), 81)

        bag = Bag(self.bagdir)
        self.assertEqual(bag.metadata("Contact-Name"), ["Jane Doe", "John Doe"])
        self.assertEqual(bag.metadata("External-Description"), [longval])
        self.assertEqual(bag.metadata("Bag-Count"), ["1"])
        self.assertEqual(bag.property("other-info.txt", "Color"), ["blue"])
        self.assertTrue(bag.is_valid())

    def test_auto_gen(self):
        filler = Filler(self.bagdir)
        filler.auto_gen([cnsts.BAGGING_DATE, "Goober"])
        filler.payload("a.txt", io.BytesIO(b"a"))
        filler.to_directory()
        bag = Bag(self.bagdir)
        self.assertEqual(bag.metadata_names(), [cnsts.BAGGING_DATE])

    def test_no_auto_gen(self):
        filler = Filler(self.bagdir)
        filler.no_auto_gen()
        filler.payload("a.txt", io.BytesIO(b"a"))
        filler.to_directory()
        self.assertFalse(os.path.exists(os.path.join(self.bagdir,
                                                     "bag-info.txt")))
        bag = Bag(self.bagdir)
        self.assertEqual(len(bag.tag_manifest()), 2)
        self.assertTrue(bag.is_valid())

    def test_empty_bag(self):
        filler = Filler(self.bagdir)
        filler.to_directory()
        bag = Bag(self.bagdir)
        self.assertEqual(bag.metadata("Payload-Oxum"), ["0.0"])
        self.assertEqual(bag.metadata("Bag-Size"), ["0 bytes"])
        self.assertTrue(bag.is_valid())

    def test_encoding(self):
        filler = Filler(self.bagdir, encoding="UTF-16")
        filler.payload("a.txt", io.BytesIO(b"a"))
        filler.metadata("Contact-Name", "Zoë Ångström")
        filler.to_directory()

        bag = Bag(self.bagdir)
        self.assertEqual(bag.tag_encoding(), "UTF-16")
        self.assertEqual(bag.metadata("Contact-Name"), ["Zoë Ångström"])
        self.assertEqual(len(bag.payload_manifest()), 1)
        self.assertTrue(bag.is_valid())

    def test_payload_ref(self):
        filler = Filler(self.bagdir, ["sha256"])
        filler.payload("local.txt", io.BytesIO(b"local"))
        filler.payload_ref("remote.txt", io.BytesIO(b"remote content"),
                           "http://example.org/remote.txt")
        filler.to_directory()

        self.assertEqual(self.read_lines("fetch.txt"),
                         ["http://example.org/remote.txt 14 data/remote.txt"])
        bag = Bag(self.bagdir)
        self.assertEqual(bag.payload_manifest()["data/remote.txt"],
                         hashlib.sha256(b"remote content").hexdigest())
        self.assertEqual(bag.metadata("Payload-Oxum"), ["19.2"])
        self.assertIn("fetch.txt", bag.tag_manifest())
        self.assertEqual(bag.completeness_status(), cnsts.FETCH_PRESENT)
        self.assertEqual(bag.validation_status(), cnsts.FETCH_PRESENT)

    def test_lone_payload_ref(self):
        src = os.path.join(self.tempdir, "remote.bin")
        with open(src, 'wb') as fd:
            fd.write(b"0123456789")
        filler = Filler(self.bagdir)
        filler.payload_ref("remote.bin", src, "https://example.org/r.bin",
                           size=10)
        self.assertEqual(Bag(filler.to_directory()).completeness_status(),
                         cnsts.FETCH_PRESENT)

    def test_payload_ref_uri(self):
        filler = Filler(self.bagdir)
        with self.assertRaises(ConfigurationError):
            filler.payload_ref("a.txt", io.BytesIO(b"a"), "relative/path")
        with self.assertRaises(ConfigurationError):
            filler.payload_ref("a.txt", io.BytesIO(b"a"), "http://x.org/a b")
        with self.assertRaises(ConfigurationError):
            filler.payload_ref_unsafe("a.txt", 1, "", {"sha512": "abc"})

    def test_payload_ref_unsafe(self):
        filler = Filler(self.bagdir, ["sha256", "md5"])
        with self.assertRaises(ConfigurationError):
            filler.payload_ref_unsafe("a.txt", 1, "http://x.org/a",
                                      {"sha256": "abc"})
        filler.payload_ref_unsafe("a.txt", None, "http://x.org/a",
                                  {"SHA-256": "ABC", "md5": "def"})
        filler.to_directory()

        self.assertEqual(self.read_lines("fetch.txt"),
                         ["http://x.org/a - data/a.txt"])
        self.assertEqual(self.read_lines("manifest-sha256.txt"),
                         ["abc data/a.txt"])
        self.assertEqual(self.read_lines("manifest-md5.txt"),
                         ["def data/a.txt"])
        self.assertEqual(Bag(self.bagdir).metadata("Payload-Oxum"), ["0.1"])

    def test_finalized(self):
        filler = Filler(self.bagdir)
        filler.to_directory()
        self.assertTrue(filler.is_finalized)
        self.assertEqual(filler.to_directory(), self.bagdir)

        with self.assertRaises(BagError):
            filler.payload("late.txt", io.BytesIO(b"late"))
        with self.assertRaises(BagError):
            filler.payload_stream("late.txt")
        with self.assertRaises(BagError):
            filler.tag("late.txt", io.BytesIO(b"late"))
        with self.assertRaises(BagError):
            filler.metadata("Contact-Name", "Late Comer")
        with self.assertRaises(BagError):
            filler.payload_ref_unsafe("late.txt", 1, "http://x.org/l",
                                      {"sha512": "abc"})
        self.assertTrue(Bag(self.bagdir).is_valid())

class TestPackaging(test.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tempdir)

    def fill(self, parent, name="pkgbag"):
        filler = Filler(os.path.join(parent, name), ["sha256"])
        filler.payload("a.txt", io.BytesIO(b"aaa"))
        filler.payload("sub/b.txt", io.BytesIO(b"bbb"))
        filler.metadata("Contact-Name", "Jane Doe")
        return filler

    def test_to_package_zip(self):
        filler = self.fill(self.tempdir)
        pkg = filler.to_package()
        self.assertEqual(pkg, os.path.join(self.tempdir, "pkgbag.zip"))
        self.assertTrue(os.path.isfile(pkg))
        self.assertFalse(os.path.exists(os.path.join(self.tempdir, "pkgbag")))

        with zipfile.ZipFile(pkg) as zf:
            names = zf.namelist()
            self.assertEqual(names[0], "pkgbag/")
            for name in names:
                self.assertTrue(name.startswith("pkgbag/"))
            self.assertIn("pkgbag/data/sub/b.txt", names)
            self.assertIn("pkgbag/bagit.txt", names)
            self.assertEqual(zf.read("pkgbag/data/a.txt"), b"aaa")

        with self.assertRaises(OSError):
            filler.to_package()
        with self.assertRaises(OSError):
            filler.to_directory()

    def test_to_package_tgz(self):
        pkg = self.fill(self.tempdir).to_package("tgz")
        self.assertEqual(pkg, os.path.join(self.tempdir, "pkgbag.tgz"))
        with tarfile.open(pkg) as tf:
            names = tf.getnames()
            self.assertEqual(names[0], "pkgbag")
            self.assertIn("pkgbag/data/sub/b.txt", names)
            self.assertEqual(tf.extractfile("pkgbag/data/a.txt").read(),
                             b"aaa")

    def test_bad_format(self):
        filler = self.fill(self.tempdir)
        with self.assertRaises(ConfigurationError):
            filler.to_package("rar")
        self.assertFalse(filler.is_finalized)

    def test_no_time(self):
        pkgs = {}
        for fmt in ("zip", "tgz"):
            pkgs[fmt] = []
            for i in range(2):
                parent = os.path.join(self.tempdir, fmt + str(i))
                os.mkdir(parent)
                filler = self.fill(parent)
                filler.no_auto_gen()
                pkgs[fmt].append(filler.to_package(fmt, no_time=True))
            with open(pkgs[fmt][0], 'rb') as fd:
                first = fd.read()
            with open(pkgs[fmt][1], 'rb') as fd:
                second = fd.read()
            self.assertEqual(first, second)

        with zipfile.ZipFile(pkgs["zip"][0]) as zf:
            for info in zf.infolist():
                self.assertEqual(info.date_time, (1980, 1, 1, 0, 0, 0))
        with tarfile.open(pkgs["tgz"][0]) as tf:
            for info in tf.getmembers():
                self.assertEqual(info.mtime, 0)

    def test_transient_stream(self):
        filler = Filler()
        filler.payload("a.txt", io.BytesIO(b"aaa"))
        pkg = filler.base + ".zip"
        stream = filler.to_stream()
        self.assertTrue(os.path.isfile(pkg))
        self.assertFalse(os.path.exists(filler.base))
        self.assertEqual(stream.read(2), b"PK")
        stream.close()
        self.assertFalse(os.path.exists(pkg))
        stream.close()

        with self.assertRaises(OSError):
            filler.to_stream()

    def test_stream(self):
        filler = self.fill(self.tempdir)
        with filler.to_stream("tgz") as stream:
            self.assertEqual(stream.read(2), b"\x1f\x8b")
        self.assertTrue(os.path.isfile(os.path.join(self.tempdir,
                                                    "pkgbag.tgz")))


if __name__ == '__main__':
    test.main()
