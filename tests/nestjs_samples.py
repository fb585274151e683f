"""
Sample NestJS sources and policy documents shared by the test modules
"""

import io
import zipfile

ACCOUNT_CONTROLLER = """\
import { Body, Controller, Get, Param, Patch, Delete, UseGuards } from '@nestjs/common';
import { AccountService } from './account.service';
import { Roles } from '../common/roles.decorator';
import { CheckPolicies } from '../common/check-policies.decorator';
import { ReadAccountPolicy, UpdateAccountPolicy } from './policies/account.policy';
import { UpdateAccountDto } from './dto/update-account.dto';

@Controller('accounts')
export class AccountController {
  constructor(private readonly accountService: AccountService) {}

  @Get()
  @Roles('ADMIN')
  findAll() {
    return this.accountService.findAll();
  }

  @Get(':id')
  @Roles('USER')
  @CheckPolicies(new ReadAccountPolicy())
  findOne(@Param('id') id: string) {
    return this.accountService.findOne(+id);
  }

  @Patch(':id')
  @Roles('ADMIN')
  @CheckPolicies(new UpdateAccountPolicy())
  update(@Param('id') id: string, @Body() dto: UpdateAccountDto) {
    return this.accountService.update(+id, dto);
  }

  private toView(account: any) {
    return account;
  }
}
"""

ACCOUNT_SERVICE = """\
import { Injectable } from '@nestjs/common';
import { InjectRepository } from '@nestjs/typeorm';
import { Repository } from 'typeorm';
import { Account } from './entities/account.entity';

@Injectable()
export class AccountService {
  constructor(
    @InjectRepository(Account)
    private readonly accountRepository: Repository<Account>,
  ) {}

  findAll() {
    return this.accountRepository.find();
  }

  findOne(id: number) {
    return this.accountRepository.findOneBy({ id });
  }

  update(id: number, dto: any) {
    return this.accountRepository.update(id, dto);
  }
}
"""

ACCOUNT_POLICY = """\
import { BasePolicy } from '../../common/base.policy';

export class ReadAccountPolicy extends BasePolicy {
  constructor() {
    super('user.id == account.ownerId');
  }
}

export class UpdateAccountPolicy extends BasePolicy {
  constructor() {
    super("account.status != 'CLOSED'");
  }
}
"""

AUTH_CONTROLLER = """\
import { Controller, Post } from '@nestjs/common';
import { AuthService } from './auth.service';

@Controller('auth')
export class AuthController {
  constructor(private readonly authService: AuthService) {}

  @Post('login')
  @Roles('ADMIN')
  login() {
    return this.authService.login();
  }
}
"""

POLICY_XML = """\
<Policys>
  <Module>
    <Name>account</Name>
    <Controller1>
      <Rule>
        <RuleId>1</RuleId>
        <Effect>Allow</Effect>
        <Role>ADMIN</Role>
        <Action>GET</Action>
        <Resource>account</Resource>
        <Name>ListAccounts</Name>
      </Rule>
      <Rule>
        <RuleId>2</RuleId>
        <Effect>Allow</Effect>
        <Role>USER</Role>
        <Action>GET</Action>
        <Resource>account</Resource>
        <Name>ReadAccountPolicy</Name>
        <Condition>
          <Restriction>user.id == account.ownerId</Restriction>
        </Condition>
      </Rule>
      <Rule>
        <RuleId>3</RuleId>
        <Effect>Allow</Effect>
        <Role>ADMIN</Role>
        <Action>PATCH</Action>
        <Resource>account</Resource>
        <Name>UpdateAccountPolicy</Name>
        <Condition>
          <Restriction>account.status != 'CLOSED'</Restriction>
        </Condition>
      </Rule>
    </Controller1>
  </Module>
</Policys>
"""

DELETE_RULE = """\
      <Rule>
        <RuleId>4</RuleId>
        <Effect>Allow</Effect>
        <Role>ADMIN</Role>
        <Action>DELETE</Action>
        <Resource>account</Resource>
        <Name>DeleteAccount</Name>
      </Rule>
"""


def policy_xml_with_delete_rule() -> str:
    """POLICY_XML plus a rule no controller implements"""
    return POLICY_XML.replace('    </Controller1>', DELETE_RULE + '    </Controller1>')


def policy_xml_without_list_rule() -> str:
    """POLICY_XML minus the ADMIN GET rule the controller implements"""
    start = POLICY_XML.index('      <Rule>\n        <RuleId>1</RuleId>')
    end = POLICY_XML.index('      <Rule>\n        <RuleId>2</RuleId>')
    return POLICY_XML[:start] + POLICY_XML[end:]


def project_files(wrapper: str = '') -> dict:
    """Archive entry name -> content for the sample project"""
    files = {
        'package.json': '{"name": "bank"}',
        'src/account/account.controller.ts': ACCOUNT_CONTROLLER,
        'src/account/account.service.ts': ACCOUNT_SERVICE,
        'src/account/policies/account.policy.ts': ACCOUNT_POLICY,
        'src/auth/auth.controller.ts': AUTH_CONTROLLER,
        'src/main.ts': "console.log('bootstrap');\n",
    }
    return {wrapper + name: content for name, content in files.items()}


def make_zip(files: dict, directories=()) -> bytes:
    """Build an in-memory zip from {entry_name: text}"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for directory in directories:
            archive.writestr(directory.rstrip('/') + '/', '')
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def make_project_zip(wrapper: str = '') -> bytes:
    return make_zip(project_files(wrapper))
