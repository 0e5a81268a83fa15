"""
Unit tests for the Handler orchestrator.

Covers preconditions and the single-use lifecycle, the two-phase execution order,
list fields, default values, required-if conditions, on-demand mode, existence checks,
custom hooks, file uploads and metrics.
"""

import os
from datetime import date
from unittest.mock import AsyncMock, Mock

import pytest
from prometheus_client import REGISTRY
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from formhandler.config.settings import DBCaseStyle, HandlerSettings
from formhandler.exceptions import (
    ConfigurationError,
    DatabaseCheckError,
    DataSourceNotSetError,
    FilesSourceNotSetError,
    RuleDefinitionError,
    RulesNotSetError,
    StateError,
)
from formhandler.handler import Handler, HandlerState


class TestPreconditions:

    @pytest.mark.asyncio
    async def test_missing_data_source(self, make_handler):
        handler = make_handler(rules={'name': 'text'})
        with pytest.raises(DataSourceNotSetError):
            await handler.execute()
        assert handler.state is HandlerState.FAILED

    @pytest.mark.asyncio
    async def test_missing_rules(self, make_handler):
        with pytest.raises(RulesNotSetError):
            await make_handler(data={'name': 'Jack'}).execute()

    @pytest.mark.asyncio
    async def test_file_field_without_files_source(self, make_handler):
        handler = make_handler(data={}, rules={'cv': 'document'})
        with pytest.raises(FilesSourceNotSetError):
            await handler.execute()

    @pytest.mark.asyncio
    async def test_handler_runs_only_once(self, make_handler):
        handler = make_handler(data={'name': 'Jack'}, rules={'name': 'text'})
        assert await handler.execute() is True

        with pytest.raises(StateError):
            await handler.execute()
        assert handler.state is HandlerState.DONE

    @pytest.mark.asyncio
    async def test_unknown_type_fails_the_handler(self, make_handler):
        handler = make_handler(data={'name': 'Jack'}, rules={'name': 'colour'})
        with pytest.raises(RuleDefinitionError):
            await handler.execute()
        assert handler.state is HandlerState.FAILED
        assert handler.fails() is True

    @pytest.mark.asyncio
    async def test_setters_configure_a_bare_handler(self, make_handler):
        handler = make_handler()
        handler.set_data_source({'name': 'Jack'}).set_rules({'name': 'text', 'age': 'pInt'})
        handler.add_field('age', '30')

        assert await handler.execute() is True
        assert dict(handler.data) == {'name': 'Jack', 'age': 30}


class TestExecution:

    @pytest.mark.asyncio
    async def test_successful_submission(self, make_handler):
        handler = make_handler(
            data={
                'firstName': ' jack ',
                'email': 'jack2@example.com',
                'password1': 'random_123',
                'password2': 'random_123',
                'age': '30',
                'subscribe': 'on',
            },
            rules={
                'firstName': {'filters': {'capitalize': True}},
                'email': {'type': 'email', 'checks': {'that': 'itDoesNotExist', 'model': 'users'}},
                'password1': 'password',
                'password2': {'type': 'password', 'options': {'shouldMatch': 'password1'}},
                'age': {'type': 'pInt', 'options': {'min': 18}},
                'subscribe': 'checkbox',
            }
        )

        assert await handler.execute() is True
        assert handler.succeeds() is True
        assert dict(handler.errors) == {}
        assert dict(handler.data) == {
            'firstName': 'Jack',
            'email': 'jack2@example.com',
            'password1': 'random_123',
            'password2': 'random_123',
            'age': 30,
            'subscribe': True,
        }

    @pytest.mark.asyncio
    async def test_errors_are_collected_per_field(self, make_handler):
        handler = make_handler(
            data={'email': '(someone@example.com)', 'age': '12', 'name': 'Jack'},
            rules={'email': 'email', 'age': {'type': 'pInt', 'options': {'min': 18}}, 'name': 'text'}
        )

        assert await handler.execute() is False
        assert dict(handler.errors) == {
            'email': '"(someone@example.com)" is not a valid email address',
            'age': 'age should not be less than 18',
        }
        assert dict(handler.data) == {'name': 'Jack'}

    @pytest.mark.asyncio
    async def test_missing_required_field_skips_checks_and_hooks(self, make_handler, memory_adapter):
        hook = Mock(return_value=True)
        handler = make_handler(
            data={},
            rules={'email': {'type': 'email', 'validate': hook,
                             'checks': {'that': 'itDoesNotExist', 'model': 'users'}}}
        )

        assert await handler.execute() is False
        assert handler.errors['email'] == 'email is required'
        assert memory_adapter.queries == []
        hook.assert_not_called()

    @pytest.mark.asyncio
    async def test_optional_fields_and_default_values(self, make_handler):
        handler = make_handler(
            data={'nickname': ''},
            rules={
                'nickname': {'required': False},
                'country': {'defaultValue': 'Nigeria'},
            }
        )

        assert await handler.execute() is True
        assert dict(handler.data) == {'country': 'Nigeria'}

    @pytest.mark.asyncio
    async def test_non_list_field_rejects_multiple_values(self, make_handler):
        handler = make_handler(data={'name': ['Jack', 'Jill']}, rules={'name': 'text'})
        assert await handler.execute() is False
        assert handler.errors['name'] == 'name does not accept multiple values'

    @pytest.mark.asyncio
    async def test_list_fields(self, make_handler):
        handler = make_handler(
            data={'languages': ['python', 'go'], 'hobbies': 'chess'},
            rules={'languages': 'text', 'hobbies': 'text'}
        )

        assert await handler.execute() is True
        assert handler.data['languages'] == ['python', 'go']
        assert handler.data['hobbies'] == ['chess']

    @pytest.mark.asyncio
    async def test_list_element_error_names_its_position(self, make_handler):
        handler = make_handler(
            data={'scores': ['1', 'x', 'y']},
            rules={'scores': {'type': 'int', 'options': {'err': '{_index} score is not a number'}}}
        )

        assert await handler.execute() is False
        assert handler.errors['scores'] == '2nd score is not a number'

    @pytest.mark.asyncio
    async def test_date_bound_uses_current_date(self, make_handler):
        handler = make_handler(
            data={'dob': '2999-01-01'},
            rules={'dob': {'type': 'date', 'options': {'max': '{current_date}'}}}
        )

        await handler.execute()
        assert handler.errors['dob'] == (
            f'dob should not be greater than {date.today().isoformat()}'
        )

    @pytest.mark.asyncio
    async def test_results_are_read_only(self, make_handler):
        handler = make_handler(data={'name': 'Jack'}, rules={'name': 'text'})
        await handler.execute()

        with pytest.raises(TypeError):
            handler.data['name'] = 'Jill'
        with pytest.raises(TypeError):
            handler.errors['name'] = 'broken'

    @pytest.mark.asyncio
    async def test_stored_values_keep_their_text(self, make_handler):
        handler = make_handler(
            data={'note': 'Tom & Jerry <b>rock</b>', 'password': 'ab<cd>12&x'},
            rules={'note': 'text', 'password': 'password'}
        )

        assert await handler.execute() is True
        assert handler.data['note'] == 'Tom & Jerry rock'
        assert handler.data['password'] == 'ab<cd>12&x'


class TestRequiredIf:

    @pytest.mark.asyncio
    async def test_dropped_rule_is_ignored(self, make_handler):
        handler = make_handler(
            data={'country': 'Ghana'},
            rules={
                'country': 'text',
                'state': {'required': {'if': 'equals', 'field': 'country', 'value': 'Nigeria'},
                          'defaultValue': 'Lagos'},
            }
        )

        assert await handler.execute() is True
        assert 'state' not in handler.data
        assert 'state' not in handler.get_resolved_rules()

    @pytest.mark.asyncio
    async def test_condition_met_makes_field_required(self, make_handler):
        handler = make_handler(
            data={'country': 'Nigeria'},
            rules={
                'country': 'text',
                'state': {'required': {'if': 'equals', 'field': 'country', 'value': 'Nigeria'}},
            }
        )

        assert await handler.execute() is False
        assert handler.errors['state'] == 'state is required'

    @pytest.mark.asyncio
    async def test_kept_optional_rule_falls_back_to_default(self, make_handler):
        handler = make_handler(
            data={},
            rules={'endMonth': {
                'type': 'pInt',
                'required': {'if': 'checked', 'field': 'hasEnd', 'dropOnFail': False},
                'defaultValue': 10,
            }}
        )

        assert await handler.execute() is True
        assert handler.data['endMonth'] == 10


class TestOnDemand:

    RULES = {'name': 'text', 'email': 'email', 'age': 'pInt'}

    @pytest.mark.asyncio
    async def test_only_submitted_fields_are_validated(self, make_handler):
        handler = make_handler(data={'name': 'Jack'}, rules=self.RULES)

        assert await handler.execute(on_demand=True) is True
        assert list(handler.get_resolved_rules()) == ['name']

    @pytest.mark.asyncio
    async def test_required_fields_are_added(self, make_handler):
        handler = make_handler(data={'name': 'Jack'}, rules=self.RULES)

        assert await handler.execute(on_demand=True, required_fields='email') is False
        assert dict(handler.errors) == {'email': 'email is required'}


class TestExistenceChecks:

    @pytest.mark.asyncio
    async def test_duplicate_record(self, make_handler):
        handler = make_handler(
            data={'email': 'someone@example.com'},
            rules={'email': {'type': 'email',
                             'checks': [{'that': 'itDoesNotExist', 'model': 'users'}]}}
        )

        assert await handler.execute() is False
        assert handler.errors['email'] == 'email:"someone@example.com" already exists'
        assert 'email' not in handler.data

    @pytest.mark.asyncio
    async def test_case_style_override(self, make_handler, memory_adapter):
        handler = make_handler(
            data={'firstName': 'Jack'},
            rules={'firstName': {'checks': {'that': 'itExists', 'model': 'users'}}},
            db_case_style='snake'
        )

        assert handler.settings.db_case_style is DBCaseStyle.SNAKE
        assert await handler.execute() is False
        assert memory_adapter.queries == [{'first_name': 'Jack'}]
        assert handler.errors['firstName'] == 'firstName:"Jack" does not exist'

    def test_invalid_case_style(self, make_handler):
        with pytest.raises(ConfigurationError):
            make_handler(db_case_style='kebab')

    @pytest.mark.asyncio
    async def test_datastore_failure_is_fatal(self, make_handler):
        collection = Mock(spec=Collection)
        collection.name = 'users'
        collection.count_documents.side_effect = PyMongoError('timeout')

        handler = make_handler(
            data={'email': 'jack@example.com'},
            rules={'email': {'type': 'email', 'checks': {'that': 'itExists', 'model': collection}}},
            db_adapter=None
        )

        with pytest.raises(DatabaseCheckError):
            await handler.execute()
        assert handler.state is HandlerState.FAILED


class TestHooks:

    @pytest.mark.asyncio
    async def test_validate_hook_receives_filtered_value(self, make_handler):
        hook = Mock(return_value=True)
        handler = make_handler(data={'name': ' Jack '}, rules={'name': {'validate': hook}})

        assert await handler.execute() is True
        hook.assert_called_once_with('name', 'Jack', 0, handler)

    @pytest.mark.asyncio
    async def test_failing_validate_hook(self, make_handler):
        handler = make_handler(
            data={'name': 'Jack'},
            rules={'name': {'validate': AsyncMock(return_value=False)}}
        )

        assert await handler.execute() is False
        assert handler.errors['name'] == 'name validation failed'
        assert 'name' not in handler.data

    @pytest.mark.asyncio
    async def test_validate_hook_custom_error(self, make_handler):
        handler = make_handler(
            data={'name': 'Jack'},
            rules={'name': {'validate': lambda *args: False,
                            'options': {'validateErr': '{this} is reserved'}}}
        )

        await handler.execute()
        assert handler.errors['name'] == '"Jack" is reserved'

    @pytest.mark.asyncio
    async def test_compute_hook_replaces_each_value(self, make_handler):
        async def compute(field, value):
            return f'{field}:{value.lower()}'

        handler = make_handler(
            data={'tags': ['Python', 'Go']},
            rules={'tags': {'compute': compute}}
        )

        assert await handler.execute() is True
        assert handler.data['tags'] == ['tags:python', 'tags:go']

    @pytest.mark.asyncio
    async def test_hooks_can_record_errors_and_custom_data(self, make_handler):
        def validate(field, value, index, handler):
            handler.set_custom_data('checked', value)
            handler.set_error('other')
            return True

        handler = make_handler(data={'name': 'Jack'}, rules={'name': {'validate': validate}})

        assert await handler.execute() is False
        assert handler.get_custom_data('checked') == 'Jack'
        assert handler.errors['other'] == 'error occurred'


class TestFileUploads:

    @pytest.mark.asyncio
    async def test_relocated_upload(self, make_handler, upload, move_dir):
        handler = make_handler(
            data={},
            files={'cv': upload('pdf', 'resume.pdf')},
            rules={'cv': {'type': 'document', 'options': {'moveTo': str(move_dir)}}}
        )

        assert await handler.execute() is True

        file_name = handler.get_file_name('cv')
        stored = handler.data['cv']
        assert stored['name'] == 'resume.pdf'
        assert stored['fileName'] == file_name
        assert stored['path'] == os.path.join(str(move_dir), file_name)
        assert os.path.exists(stored['path'])

    @pytest.mark.asyncio
    async def test_upload_collection(self, make_handler, upload, upload_collection):
        files = {'cvs': upload_collection(upload('pdf', 'a.pdf'), upload('txt', 'b.txt'))}
        handler = make_handler(data={}, files=files, rules={'cvs': 'document'})

        assert await handler.execute() is True
        assert [entry['name'] for entry in handler.data['cvs']] == ['a.pdf', 'b.txt']
        assert handler.file_validator.get_extensions('cvs') == ['pdf', 'txt']

    @pytest.mark.asyncio
    async def test_spoofed_upload(self, make_handler, upload):
        handler = make_handler(
            data={},
            files={'avatar': upload('pdf', 'me.png')},
            rules={'avatar': 'image'}
        )

        assert await handler.execute() is False
        assert handler.errors['avatar'] == 'File extension spoofing detected'

    @pytest.mark.asyncio
    async def test_missing_upload(self, make_handler):
        handler = make_handler(data={}, files={}, rules={'cv': 'document'})
        assert await handler.execute() is False
        assert handler.errors['cv'] == 'cv is required'


class TestMetrics:

    @pytest.mark.asyncio
    async def test_execution_outcome_is_counted(self, make_handler):
        labels = {'outcome': 'failure'}
        before = REGISTRY.get_sample_value('formhandler_executions_total', labels) or 0

        handler = make_handler(
            data={},
            rules={'name': 'text'},
            settings=HandlerSettings(metrics_enabled=True)
        )
        await handler.execute()

        after = REGISTRY.get_sample_value('formhandler_executions_total', labels)
        assert after == before + 1
