#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# partialzip - Download single files from online zip archives
# Copyright (C) 2025-2026 partialzip contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import io
import os
import shutil
import tempfile
import unittest

from partialzip.Archive import RemoteArchive
from partialzip.Progress import Progress, BitmathTqdm

from tests.ArchiveFactory import ArchiveFactory, DEFLATE


class ProgressTest(unittest.TestCase):

    def testLogsWithoutBar(self):
        messages = []
        progress = Progress(1000, loggerCallback=messages.append, logInterval=3600)

        progress.advance(400)
        self.assertEqual(messages, [])

        progress.update(1000, forceLog=True)
        self.assertEqual(len(messages), 1)
        self.assertIn('100.00%', messages[0])
        self.assertEqual(progress.getPercentage(), 100)
        print("[OK] Progress logged on request")

    def testBarClosedOnExit(self):
        stream = io.StringIO()
        progress = Progress(100)
        progress.pbar = BitmathTqdm(total=100, desc='entry', file=stream)
        progress.useBar = True

        with progress:
            progress.advance(60)
            self.assertEqual(progress.pbar.n, 60)

        self.assertIsNone(progress.pbar)
        self.assertIn('entry', stream.getvalue())
        print("[OK] Bar completed and closed")

    def testExtractToAdvancesProgress(self):
        tempDir = tempfile.mkdtemp()
        try:
            payload = os.urandom(5000)
            data = ArchiveFactory().add('blob.bin', payload, method=DEFLATE).build()
            progress = Progress(len(payload), loggerCallback=lambda message: None)

            with RemoteArchive.open(data) as archive:
                archive.extractTo('blob.bin', tempDir, chunkSize=1024, progress=progress)

            self.assertEqual(progress.transferred, len(payload))
        finally:
            shutil.rmtree(tempDir, ignore_errors=True)
        print("[OK] extractTo reports written bytes")


if __name__ == '__main__':
    unittest.main()
