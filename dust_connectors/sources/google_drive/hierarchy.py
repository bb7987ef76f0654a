#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Scope resolution.

An object is in scope when one of its ancestors, or the object itself, is a
watched folder. Ancestor chains are resolved through the Drive API and
memoized in a `ParentsCache`. A cache belongs to a single generation: it is
created by whoever starts the generation and handed down explicitly, so a
folder moved between two generations is never resolved from a stale chain.
"""


class ParentsCache:
    def __init__(self, generation_id=None):
        self.generation_id = generation_id
        self._chains = {}
        self.lookups = 0

    def __len__(self):
        return len(self._chains)

    async def ancestors(self, client, folder_id):
        """Ids of `folder_id` and all of its ancestors, closest first."""
        chain = []
        seen = set()
        current_id = folder_id
        while current_id is not None and current_id not in seen:
            if current_id in self._chains:
                chain.extend(self._chains[current_id])
                break
            seen.add(current_id)
            self.lookups += 1
            folder = await client.get_object(current_id)
            if folder is None:
                # not visible anymore, the chain stops here
                break
            chain.append(folder.id)
            current_id = folder.parent

        for index, ancestor_id in enumerate(chain):
            if ancestor_id not in self._chains:
                self._chains[ancestor_id] = chain[index:]
        return chain


async def get_file_parents(client, drive_object, parents_cache):
    """Ids of the object followed by the ids of its ancestors."""
    chain = [drive_object.id]
    if drive_object.parent is not None:
        chain.extend(await parents_cache.ancestors(client, drive_object.parent))
    return chain


async def object_is_in_folders(client, drive_object, folder_ids, parents_cache):
    if not folder_ids:
        return False
    chain = await get_file_parents(client, drive_object, parents_cache)
    return any(object_id in folder_ids for object_id in chain)
